"""Job executor -- learning, automated and unattended dispensing runs.

Walks the calibrated placement list in three modes:

Learning (``advance_to_next``)
    The operator steps pad by pad.  Each step stops the slow extrude
    started on the previous pad, records how long it ran, moves to the
    next pad and starts extruding again.  The mean of those durations
    becomes the automated dispense time.

Automated (``run_automated``)
    Replays the learned mean duration for every remaining placement.

Unattended (``run_job``)
    One self-contained command batch per placement: move, dispense a
    fixed (or area-scaled) B rotation, retract, dwell, raise.

Cancellation is cooperative: the ``CancellationToken`` is polled only
between batches, so an in-flight batch always completes.  A transport
failure marks the run ``FAILED`` and propagates.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable

from paste_control.calibration.model import CalibratedPoint, CalibrationModel
from paste_control.configs.loader import MachineConfig
from paste_control.errors import PreconditionFailed
from paste_control.hardware.cancellation import CancellationToken, Outcome
from paste_control.hardware.macros import MachineMacros, dispense_batch_commands
from paste_control.hardware.serial_client import Transport, TransportError

logger = logging.getLogger(__name__)

MIN_TIMING_SAMPLES = 2


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class RunState(Enum):
    """Lifecycle of a single run."""

    NOT_STARTED = auto()
    RUNNING = auto()
    COMPLETED = auto()
    CANCELLED = auto()
    FAILED = auto()


@dataclass
class JobRunState:
    """Per-session run bookkeeping (never persisted)."""

    current_placement_index: int = -1
    last_navigated_placement_index: int = -1
    extrusion_timings: list[float] = field(default_factory=list)
    is_learning_mode: bool = True
    auto_extrusion_duration: float | None = None


@dataclass(frozen=True)
class RunProgress:
    """Snapshot passed to the progress callback."""

    state: RunState
    completed: int
    total: int
    current_index: int
    message: str = ""


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class JobExecutor:
    """Dispensing run sequencer.

    Parameters
    ----------
    client : Transport
        Connected machine transport.
    model : CalibrationModel
        Source of calibrated placements and tip offset.
    config : MachineConfig
        Machine configuration.
    clock : callable
        Monotonic seconds; injectable for tests.
    sleep : callable
        Blocking wait in seconds; injectable for tests.
    """

    def __init__(
        self,
        client: Transport,
        model: CalibrationModel,
        config: MachineConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._model = model
        self._cfg = config
        self._macros = MachineMacros(client, config)
        self._clock = clock
        self._sleep = sleep

        self.state = JobRunState()
        self._run_state = RunState.NOT_STARTED
        self._dispense_started_at: float | None = None
        self._progress_cb: Callable[[RunProgress], None] | None = None

    # ------------------------------------------------------------------
    # Common
    # ------------------------------------------------------------------

    @property
    def run_state(self) -> RunState:
        return self._run_state

    def set_progress_callback(
        self, fn: Callable[[RunProgress], None],
    ) -> None:
        """Register a callback invoked after each placement."""
        self._progress_cb = fn

    def _notify(self, completed: int, total: int, message: str = "") -> None:
        if self._progress_cb is None:
            return
        snapshot = RunProgress(
            state=self._run_state,
            completed=completed,
            total=total,
            current_index=self.state.current_placement_index,
            message=message,
        )
        try:
            self._progress_cb(snapshot)
        except Exception as exc:  # noqa: BLE001
            logger.error("Progress callback error: %s", exc)

    def _check_preconditions(self) -> list[CalibratedPoint]:
        placements = self._model.calibrated_placements()
        if not placements:
            raise PreconditionFailed("No placements to dispense")
        if not self._model.status.is_calibrated:
            raise PreconditionFailed(
                "Board is not registered (no rough or fine transform)"
            )
        return placements

    def _target(self, pt: CalibratedPoint) -> tuple[float, float, float]:
        """Nozzle XYZ for a placement: tip offset in XY, approach clearance in Z."""
        ox, oy = self._model.tip_offset
        return (
            pt.x + ox,
            pt.y + oy,
            pt.z - self._cfg.motion.approach_clearance_mm,
        )

    def _move_to(self, pt: CalibratedPoint) -> None:
        x, y, z = self._target(pt)
        self._macros.go_to(x, y)
        self._macros.go_to_z(z)

    def dispense_amount(self, pt: CalibratedPoint) -> float:
        """B rotation (degrees) for one placement.

        Adaptive mode scales the base amount by pad area relative to the
        reference area, clamped to the configured bounds.  Placements
        without an area use the fixed amount.
        """
        d = self._cfg.dispense
        if not d.adaptive.enabled or pt.area is None:
            return d.dispense_degrees
        a = d.adaptive
        scaled = d.dispense_degrees * pt.area / a.reference_area_mm2
        return min(max(scaled, a.min_degrees), a.max_degrees)

    # ------------------------------------------------------------------
    # Learning mode
    # ------------------------------------------------------------------

    def reset_extrusion_timing(self) -> None:
        """Forget learned timings and restart from the first placement."""
        self.state.extrusion_timings.clear()
        self.state.auto_extrusion_duration = None
        self.state.current_placement_index = -1
        self.state.is_learning_mode = True
        self._dispense_started_at = None
        logger.info("Extrusion timing reset")

    def advance_to_next(self) -> bool:
        """Step to the next placement in learning mode.

        Returns
        -------
        bool
            ``False`` when already past the last placement (no-op).
        """
        placements = self._check_preconditions()
        next_idx = self.state.current_placement_index + 1
        if next_idx >= len(placements):
            logger.info("Already at the last placement")
            return False

        if self.state.current_placement_index >= 0:
            self._macros.stop_extrude()
            self._macros.retract_and_raise()
            if self._dispense_started_at is not None:
                elapsed_ms = (self._clock() - self._dispense_started_at) * 1000.0
                self._record_timing(elapsed_ms)

        self._move_to(placements[next_idx])
        self._macros.start_slow_extrude()
        self._dispense_started_at = self._clock()
        self.state.current_placement_index = next_idx
        self.state.last_navigated_placement_index = next_idx
        logger.info("Dispensing placement %d/%d", next_idx + 1, len(placements))
        return True

    def stop_dispensing(self) -> None:
        """Stop a learning-mode extrude and lift the tip without recording."""
        self._macros.stop_extrude()
        self._macros.retract_and_raise()
        self._dispense_started_at = None
        logger.info("Dispensing stopped")

    def _record_timing(self, elapsed_ms: float) -> None:
        timings = self.state.extrusion_timings
        timings.append(elapsed_ms)
        self.state.auto_extrusion_duration = sum(timings) / len(timings)
        logger.info(
            "Recorded %.0f ms (mean %.0f ms over %d samples)",
            elapsed_ms, self.state.auto_extrusion_duration, len(timings),
        )

    # ------------------------------------------------------------------
    # Automated mode
    # ------------------------------------------------------------------

    def run_automated(self, token: CancellationToken) -> Outcome:
        """Dispense all remaining placements for the learned mean duration.

        Raises
        ------
        PreconditionFailed
            If fewer than 2 timing samples have been recorded.
        """
        placements = self._check_preconditions()
        duration_ms = self.state.auto_extrusion_duration
        if len(self.state.extrusion_timings) < MIN_TIMING_SAMPLES or duration_ms is None:
            raise PreconditionFailed(
                f"Need {MIN_TIMING_SAMPLES} timing samples, "
                f"have {len(self.state.extrusion_timings)}"
            )

        start = self.state.current_placement_index + 1
        total = len(placements)
        self.state.is_learning_mode = False
        self._run_state = RunState.RUNNING
        outcome = Outcome.COMPLETED
        logger.info(
            "Automated run from placement %d, %.0f ms per pad", start + 1, duration_ms,
        )
        try:
            for idx in range(start, total):
                if token.is_cancelled:
                    outcome = Outcome.CANCELLED
                    break
                self._macros.stop_extrude()
                if token.is_cancelled:
                    outcome = Outcome.CANCELLED
                    break
                self._macros.retract_and_raise()
                self._move_to(placements[idx])
                self._macros.start_slow_extrude()
                self._sleep(duration_ms / 1000.0)
                self.state.current_placement_index = idx
                self.state.last_navigated_placement_index = idx
                self._notify(idx + 1, total, f"Placement {idx + 1}/{total}")

            self._macros.stop_extrude()
            self._macros.retract_and_raise()
            self._macros.park()
            self._run_state = (
                RunState.CANCELLED if outcome is Outcome.CANCELLED
                else RunState.COMPLETED
            )
            self._dispense_started_at = None
            logger.info("Automated run finished: %s", outcome.name)
            return outcome
        except TransportError:
            self._run_state = RunState.FAILED
            logger.exception("Automated run failed")
            raise
        finally:
            self.state.is_learning_mode = True

    # ------------------------------------------------------------------
    # Unattended mode
    # ------------------------------------------------------------------

    def run_job(self, token: CancellationToken) -> Outcome:
        """Dispense every placement with one command batch each.

        Returns
        -------
        Outcome
            ``CANCELLED`` if the token was set; the placement in flight
            when it was set still completes.
        """
        placements = self._check_preconditions()
        d = self._cfg.dispense
        safe_z = self._cfg.motion.safe_z_mm
        total = len(placements)

        self.state.current_placement_index = -1
        self._run_state = RunState.RUNNING
        self._notify(0, total, "Starting")
        logger.info("Starting job: %d placements", total)

        try:
            self._macros.raise_to_safe()
            for idx, pt in enumerate(placements):
                if token.is_cancelled:
                    self._run_state = RunState.CANCELLED
                    self._notify(idx, total, f"Cancelled after {idx}/{total}")
                    logger.info("Job cancelled after %d placements", idx)
                    return Outcome.CANCELLED

                x, y, z = self._target(pt)
                self._client.send(
                    dispense_batch_commands(
                        x, y, z,
                        amount=self.dispense_amount(pt),
                        retraction=d.retraction_degrees,
                        dwell_ms=d.dwell_ms,
                        safe_z=safe_z,
                    )
                )
                self.state.current_placement_index = idx
                self._notify(idx + 1, total, f"Placement {idx + 1}/{total}")
        except TransportError:
            self._run_state = RunState.FAILED
            self._notify(
                self.state.current_placement_index + 1, total, "Transport failure",
            )
            logger.exception(
                "Job failed at placement %d", self.state.current_placement_index + 1,
            )
            raise

        self._run_state = RunState.COMPLETED
        self._notify(total, total, "Complete")
        logger.info("Job complete")
        return Outcome.COMPLETED

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def move_camera_to_placement(self, index: int) -> None:
        """Put the camera over a placement at safe Z."""
        pt = self._placement(index)
        self._macros.raise_to_safe()
        self._macros.go_to(pt.x, pt.y)
        self.state.last_navigated_placement_index = index

    def move_nozzle_to_placement(self, index: int) -> None:
        """Put the tip over a placement at its dispensing height."""
        pt = self._placement(index)
        self._macros.raise_to_safe()
        self._move_to(pt)
        self.state.last_navigated_placement_index = index

    def _placement(self, index: int) -> CalibratedPoint:
        placements = self._check_preconditions()
        if not 0 <= index < len(placements):
            raise PreconditionFailed(
                f"No placement at index {index} (have {len(placements)})"
            )
        return placements[index]
