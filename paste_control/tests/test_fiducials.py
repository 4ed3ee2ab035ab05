"""Tests for the fiducial selection workflow."""

from __future__ import annotations

import pytest

from paste_control.calibration.fiducials import (
    FiducialSelection,
    SelectionState,
    run_fiducial_selection,
)
from paste_control.calibration.model import CalibrationModel, Fiducial, Placement
from paste_control.errors import PreconditionFailed
from paste_control.hardware.cancellation import Outcome


@pytest.fixture()
def candidates_model() -> CalibrationModel:
    m = CalibrationModel()
    m.load_design(
        [Placement(5.0, 5.0)],
        [Fiducial(0, 0), Fiducial(50, 0), Fiducial(0, 40), Fiducial(60, 60)],
    )
    return m


class TestFiducialSelection:
    def test_three_picks_finalize(self, candidates_model: CalibrationModel) -> None:
        sel = FiducialSelection(candidates_model)
        sel.begin()
        assert sel.prompt == "Select fiducial 1 of 3"
        sel.select(3)
        assert sel.prompt == "Select fiducial 2 of 3"
        sel.select(0)
        assert sel.select(1) is SelectionState.FINALIZED
        assert candidates_model.fiducials == (
            Fiducial(60, 60), Fiducial(0, 0), Fiducial(50, 0),
        )
        assert candidates_model.potential_fiducials == ()
        assert sel.prompt is None

    def test_too_few_candidates(self) -> None:
        m = CalibrationModel()
        m.load_design([], [Fiducial(0, 0), Fiducial(1, 0)])
        with pytest.raises(PreconditionFailed):
            FiducialSelection(m).begin()

    def test_duplicate_pick_ignored(self, candidates_model: CalibrationModel) -> None:
        sel = FiducialSelection(candidates_model)
        sel.begin()
        sel.select(0)
        sel.select(0)
        assert sel.picks == (0,)
        assert sel.state is SelectionState.SELECTING

    def test_out_of_range_pick_aborts(self, candidates_model: CalibrationModel) -> None:
        version = candidates_model.version
        sel = FiducialSelection(candidates_model)
        sel.begin()
        sel.select(1)
        with pytest.raises(IndexError):
            sel.select(7)
        assert sel.state is SelectionState.IDLE
        assert sel.picks == ()
        assert candidates_model.version == version

    def test_pick_outside_selecting_ignored(self, candidates_model: CalibrationModel) -> None:
        sel = FiducialSelection(candidates_model)
        assert sel.select(0) is SelectionState.IDLE
        assert sel.picks == ()

    def test_cancel_keeps_model(self, candidates_model: CalibrationModel) -> None:
        sel = FiducialSelection(candidates_model)
        sel.begin()
        sel.select(0)
        sel.select(1)
        sel.cancel()
        assert sel.state is SelectionState.CANCELLED
        assert candidates_model.fiducials == ()
        assert len(candidates_model.potential_fiducials) == 4

    def test_reselect_from_finalized(self, model: CalibrationModel) -> None:
        original = model.fiducials
        sel = FiducialSelection(model)
        sel.begin(reselect=True)
        for i in (2, 1, 0):
            sel.select(i)
        assert model.fiducials == tuple(reversed(original))


class TestRunFiducialSelection:
    def test_driven_to_completion(self, candidates_model: CalibrationModel) -> None:
        picks = iter([0, 1, 2])
        prompts = []

        def choose(prompt, candidates):
            prompts.append(prompt)
            return next(picks)

        assert run_fiducial_selection(candidates_model, choose) is Outcome.COMPLETED
        assert len(prompts) == 3
        assert len(candidates_model.fiducials) == 3

    def test_none_cancels(self, candidates_model: CalibrationModel) -> None:
        answers = iter([2, None])
        outcome = run_fiducial_selection(
            candidates_model, lambda p, c: next(answers),
        )
        assert outcome is Outcome.CANCELLED
        assert candidates_model.fiducials == ()
