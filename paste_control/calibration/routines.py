"""Guided calibration procedures.

Each procedure is a short blocking workflow that:
    1. Moves the machine and/or asks the operator to jog it.
    2. Reads back machine positions (and camera detections).
    3. Computes the calibration artifact.
    4. Writes it to the ``CalibrationModel`` -- only after every step
       has succeeded.

All procedures accept a ``Transport``, the ``CalibrationModel`` and the
``MachineConfig`` (plus a ``Prompt`` or ``AlignmentDetector`` as needed)
and return a ``ProcedureResult``.  An operator cancel returns
``Outcome.CANCELLED``; every other failure raises.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from paste_control.calibration.model import CalibrationModel
from paste_control.configs.loader import MachineConfig, VisionConfig
from paste_control.errors import FeatureNotDetected, PreconditionFailed
from paste_control.geometry.affine import build_transform
from paste_control.hardware.cancellation import CancellationToken, Outcome
from paste_control.hardware.macros import MachineMacros
from paste_control.hardware.prompt import Prompt
from paste_control.hardware.serial_client import Position, Transport, TransportError
from paste_control.hardware.vision import AlignmentDetector, pixel_offset_to_mm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcedureResult:
    """How a procedure ended and what it measured."""

    outcome: Outcome
    values: dict[str, Any] = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.outcome is Outcome.COMPLETED


_CANCELLED = ProcedureResult(Outcome.CANCELLED)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _read_position(transport: Transport) -> Position:
    pos = transport.query_machine_position()
    if pos is None:
        raise TransportError("Machine did not report a position")
    return pos


def _require_fiducials(model: CalibrationModel) -> None:
    if len(model.fiducials) != 3:
        raise PreconditionFailed(
            f"3 fiducials required, have {len(model.fiducials)}"
        )


def _center_on_feature(
    macros: MachineMacros,
    detector: AlignmentDetector,
    vision: VisionConfig,
    sleep: Callable[[float], None],
    rounds: int | None = None,
) -> int:
    """Run vision centering rounds; return how many produced a detection."""
    hits = 0
    for r in range(rounds if rounds is not None else vision.centering_rounds):
        det = detector.detect_alignment_feature()
        if det is None:
            logger.warning("Centering round %d: no feature detected", r + 1)
            continue
        dx, dy = pixel_offset_to_mm(det, vision.mm_per_pixel, vision.invert_y)
        logger.info("Centering round %d: move (%.3f, %.3f) mm", r + 1, dx, dy)
        macros.go_to_relative(round(dx, 3), round(dy, 3))
        sleep(vision.settle_s)
        hits += 1
    return hits


# ---------------------------------------------------------------------------
# Rough (jog) registration
# ---------------------------------------------------------------------------


def rough_registration(
    transport: Transport,
    prompt: Prompt,
    model: CalibrationModel,
    config: MachineConfig,
) -> ProcedureResult:
    """Register the board by jogging the camera onto each fiducial.

    The operator centres the camera on fiducials 1..3 in turn, then
    lowers the tip to the board for the reference dispensing height.

    Returns
    -------
    ProcedureResult
        ``values``: ``transform``, ``base_height``, ``measured``.

    Raises
    ------
    PreconditionFailed
        If the model does not hold exactly 3 fiducials.
    DegenerateTriangle
        If the measured positions are collinear.
    """
    _require_fiducials(model)
    logger.info("Starting rough registration")

    measured: list[tuple[float, float]] = []
    for i in range(3):
        if not prompt.show(
            f"Jog until the camera is centred on fiducial {i + 1}, then continue.",
            "Rough registration",
        ):
            return _CANCELLED
        pos = _read_position(transport)
        measured.append((pos.x, pos.y))
        logger.info("Fiducial %d measured at (%.3f, %.3f)", i + 1, pos.x, pos.y)

    if not prompt.show(
        "Lower the tip until it just touches the board, then continue.",
        "Reference height",
    ):
        return _CANCELLED
    base_z = _read_position(transport).z

    design = [(f.x, f.y) for f in model.fiducials]
    transform = build_transform(design, measured)

    model.set_rough_transform(transform)
    model.base_height = base_z
    logger.info("Rough registration complete (base height %.3f)", base_z)
    return ProcedureResult(
        Outcome.COMPLETED,
        {"transform": transform, "base_height": base_z, "measured": measured},
    )


# ---------------------------------------------------------------------------
# Fine (vision) registration
# ---------------------------------------------------------------------------


def fine_registration(
    transport: Transport,
    detector: AlignmentDetector,
    model: CalibrationModel,
    config: MachineConfig,
    token: CancellationToken | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ProcedureResult:
    """Refine registration by vision-centering on each fiducial.

    For each fiducial: travel to its current estimate at safe Z, run
    ``vision.centering_rounds`` detect-and-move rounds, read the position.
    The fine transform is written only after all three succeed.

    Raises
    ------
    PreconditionFailed
        Without 3 fiducials or a rough transform.
    FeatureNotDetected
        If no round detected the feature for some fiducial.
    """
    _require_fiducials(model)
    if model.rough_transform is None:
        raise PreconditionFailed("Fine registration requires rough registration")

    macros = MachineMacros(transport, config)
    vision = config.vision
    estimates = model.calibrated_fiducials()
    logger.info("Starting fine registration")

    refined: list[tuple[float, float]] = []
    for i, est in enumerate(estimates):
        if token is not None and token.is_cancelled:
            return _CANCELLED
        macros.raise_to_safe()
        macros.go_to(est.x, est.y)
        sleep(vision.settle_s)

        hits = _center_on_feature(macros, detector, vision, sleep)
        if hits == 0:
            raise FeatureNotDetected(
                f"Fiducial {i + 1} not detected near ({est.x:.3f}, {est.y:.3f})"
            )
        pos = _read_position(transport)
        refined.append((pos.x, pos.y))
        logger.info(
            "Fiducial %d refined: (%.3f, %.3f) -> (%.3f, %.3f)",
            i + 1, est.x, est.y, pos.x, pos.y,
        )

    design = [(f.x, f.y) for f in model.fiducials]
    transform = build_transform(design, refined)
    model.set_fine_transform(transform)
    logger.info("Fine registration complete")
    return ProcedureResult(
        Outcome.COMPLETED, {"transform": transform, "measured": refined},
    )


# ---------------------------------------------------------------------------
# Tip offset
# ---------------------------------------------------------------------------


def calibrate_tip_offset(
    transport: Transport,
    prompt: Prompt,
    model: CalibrationModel,
    config: MachineConfig,
) -> ProcedureResult:
    """Measure the camera -> tip XY offset over fiducial 1.

    Returns
    -------
    ProcedureResult
        ``values``: ``tip_offset``, ``camera``, ``tip``.
    """
    if not model.fiducials:
        raise PreconditionFailed("Tip offset calibration requires a fiducial")

    macros = MachineMacros(transport, config)
    if model.status.is_calibrated:
        f1 = model.calibrated_fiducials()[0]
        macros.raise_to_safe()
        macros.go_to(f1.x, f1.y)

    if not prompt.show(
        "Centre the camera on fiducial 1, then continue.", "Tip offset",
    ):
        return _CANCELLED
    camera = _read_position(transport)

    nx, ny = config.tip_offset.nominal_offset_mm
    macros.go_to_relative(nx, ny)
    macros.go_to_z(config.tip_offset.tip_z_mm)

    if not prompt.show(
        "Jog until the tip is centred on fiducial 1, then continue.",
        "Tip offset",
    ):
        macros.raise_to_safe()
        return _CANCELLED
    tip = _read_position(transport)
    macros.raise_to_safe()

    offset = (tip.x - camera.x, tip.y - camera.y)
    model.tip_offset = offset
    logger.info("Tip offset: (%.3f, %.3f)", *offset)
    return ProcedureResult(
        Outcome.COMPLETED,
        {"tip_offset": offset, "camera": camera, "tip": tip},
    )


# ---------------------------------------------------------------------------
# Per-placement height probing
# ---------------------------------------------------------------------------


def probe_placement_height(
    transport: Transport,
    prompt: Prompt,
    model: CalibrationModel,
    config: MachineConfig,
    index: int,
) -> ProcedureResult:
    """Probe the board height at one placement.

    The nozzle is brought over the placement at its currently resolved
    height; the operator jogs Z to contact and the reading is stored.
    """
    if not 0 <= index < len(model.placements):
        raise PreconditionFailed(
            f"No placement at index {index} (have {len(model.placements)})"
        )
    if not model.status.is_calibrated:
        raise PreconditionFailed("Height probing requires a registration")

    macros = MachineMacros(transport, config)
    pt = model.calibrated_placements()[index]
    ox, oy = model.tip_offset

    macros.raise_to_safe()
    macros.go_to(pt.x + ox, pt.y + oy)
    macros.go_to_z(pt.z)

    if not prompt.show(
        f"Jog Z until the tip touches placement {index}, then continue.",
        "Height probe",
    ):
        macros.raise_to_safe()
        return _CANCELLED
    z = _read_position(transport).z
    macros.raise_to_safe()

    model.set_probe_height(index, z)
    return ProcedureResult(Outcome.COMPLETED, {"index": index, "z": z})


def clear_placement_height(model: CalibrationModel, index: int) -> ProcedureResult:
    """Remove the probed height of one placement."""
    if not 0 <= index < len(model.placements):
        raise PreconditionFailed(
            f"No placement at index {index} (have {len(model.placements)})"
        )
    model.clear_probe_height(index)
    return ProcedureResult(Outcome.COMPLETED, {"index": index})


# ---------------------------------------------------------------------------
# Visual homing
# ---------------------------------------------------------------------------


def visual_home(
    transport: Transport,
    detector: AlignmentDetector,
    config: MachineConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> ProcedureResult:
    """Re-home XY against the datum fiducial on the bed.

    Travels to the configured datum, centres on it with two vision rounds
    and redefines the current position as the datum (``G92``).
    """
    macros = MachineMacros(transport, config)
    dx, dy = config.motion.datum_position_mm

    macros.raise_to_safe()
    macros.go_to(dx, dy)
    sleep(config.vision.settle_s)

    hits = _center_on_feature(macros, detector, config.vision, sleep, rounds=2)
    if hits == 0:
        raise FeatureNotDetected(f"Datum fiducial not detected at ({dx}, {dy})")

    transport.send([f"G92 X{dx:g} Y{dy:g}"])
    logger.info("Visual home complete: position set to (%g, %g)", dx, dy)
    return ProcedureResult(Outcome.COMPLETED, {"datum": (dx, dy)})
