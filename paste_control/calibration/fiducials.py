"""Fiducial selection -- pick exactly 3 of N candidate alignment marks.

The workflow is an explicit state machine::

    IDLE --begin()--> SELECTING --3 picks--> FINALIZED
                          |
                          +--cancel()--> CANCELLED
                          +--error-----> IDLE (partial picks discarded)

Click order is significant: the first pick becomes fiducial 1 for every
later registration step.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Callable, Sequence

from paste_control.calibration.model import CalibrationModel, Fiducial
from paste_control.errors import PreconditionFailed
from paste_control.hardware.cancellation import Outcome

logger = logging.getLogger(__name__)

REQUIRED_FIDUCIALS = 3


class SelectionState(Enum):
    IDLE = auto()
    SELECTING = auto()
    FINALIZED = auto()
    CANCELLED = auto()


class FiducialSelection:
    """Interactive selection driven by ``select(index)`` calls.

    Parameters
    ----------
    model : CalibrationModel
        Receives the finalized triple via ``set_fiducials``.
    """

    def __init__(self, model: CalibrationModel) -> None:
        self._model = model
        self._state = SelectionState.IDLE
        self._candidates: list[Fiducial] = []
        self._picks: list[int] = []

    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def candidates(self) -> tuple[Fiducial, ...]:
        return tuple(self._candidates)

    @property
    def picks(self) -> tuple[int, ...]:
        return tuple(self._picks)

    @property
    def prompt(self) -> str | None:
        """Message for the current pick, ``None`` when not selecting."""
        if self._state is not SelectionState.SELECTING:
            return None
        return (
            f"Select fiducial {len(self._picks) + 1} of {REQUIRED_FIDUCIALS}"
        )

    def begin(self, reselect: bool = False) -> None:
        """Enter ``SELECTING``.

        Parameters
        ----------
        reselect : bool
            Re-open the current finalized fiducials instead of the design
            candidates.

        Raises
        ------
        PreconditionFailed
            If fewer than 3 candidates are available.
        """
        source = (
            self._model.fiducials if reselect
            else self._model.potential_fiducials
        )
        if len(source) < REQUIRED_FIDUCIALS:
            raise PreconditionFailed(
                f"Need at least {REQUIRED_FIDUCIALS} fiducial candidates, "
                f"have {len(source)}"
            )
        self._candidates = list(source)
        self._picks = []
        self._state = SelectionState.SELECTING
        logger.info(
            "Fiducial selection started (%d candidates, reselect=%s)",
            len(self._candidates), reselect,
        )

    def select(self, index: int) -> SelectionState:
        """Record one pick; finalizes on the third distinct index.

        Picks after finalization (or outside ``SELECTING``) are ignored.
        Repeating an already-picked index is ignored as well.

        Raises
        ------
        IndexError
            For an index outside the candidate list.  The workflow is
            reset to ``IDLE`` first.
        """
        if self._state is not SelectionState.SELECTING:
            logger.debug("Ignoring pick %d in state %s", index, self._state.name)
            return self._state

        if not 0 <= index < len(self._candidates):
            self._abort()
            raise IndexError(
                f"Candidate index {index} out of range "
                f"(0..{len(self._candidates) - 1})"
            )
        if index in self._picks:
            logger.warning("Candidate %d already selected; ignoring", index)
            return self._state

        self._picks.append(index)
        logger.info(
            "Fiducial %d/%d -> candidate %d",
            len(self._picks), REQUIRED_FIDUCIALS, index,
        )
        if len(self._picks) == REQUIRED_FIDUCIALS:
            chosen = [self._candidates[i] for i in self._picks]
            try:
                self._model.set_fiducials(chosen)
            except Exception:
                self._abort()
                raise
            self._state = SelectionState.FINALIZED
        return self._state

    def cancel(self) -> None:
        if self._state is SelectionState.SELECTING:
            logger.info("Fiducial selection cancelled")
            self._picks = []
            self._state = SelectionState.CANCELLED

    def _abort(self) -> None:
        logger.warning("Fiducial selection aborted; discarding %d picks", len(self._picks))
        self._picks = []
        self._candidates = []
        self._state = SelectionState.IDLE


def run_fiducial_selection(
    model: CalibrationModel,
    choose: Callable[[str, Sequence[Fiducial]], int | None],
    reselect: bool = False,
) -> Outcome:
    """Drive a ``FiducialSelection`` to completion from a callable.

    Parameters
    ----------
    model : CalibrationModel
        Model receiving the finalized fiducials.
    choose : callable
        ``choose(prompt, candidates)`` returns a candidate index, or
        ``None`` to cancel.
    reselect : bool
        Re-pick from the existing fiducials.

    Returns
    -------
    Outcome
        ``COMPLETED`` once 3 fiducials are set, ``CANCELLED`` otherwise.
    """
    selection = FiducialSelection(model)
    selection.begin(reselect=reselect)
    while selection.state is SelectionState.SELECTING:
        index = choose(selection.prompt or "", selection.candidates)
        if index is None:
            selection.cancel()
            break
        selection.select(index)
    if selection.state is SelectionState.FINALIZED:
        return Outcome.COMPLETED
    return Outcome.CANCELLED
