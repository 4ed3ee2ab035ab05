"""Tests for the guided calibration procedures.

The transport, operator prompt and camera detector are fakes; machine
positions are scripted in the order the procedure reads them.
"""

from __future__ import annotations

import pytest

from conftest import FakeDetector, FakePrompt, FakeTransport

from paste_control.calibration import routines
from paste_control.calibration.model import CalibrationModel, Fiducial, Placement
from paste_control.configs.loader import MachineConfig
from paste_control.errors import FeatureNotDetected, PreconditionFailed
from paste_control.hardware.cancellation import CancellationToken, Outcome
from paste_control.hardware.serial_client import Position, TransportError
from paste_control.hardware.vision import FeatureDetection


def _centred() -> FeatureDetection:
    return FeatureDetection(pixel_x=320, pixel_y=240, frame_width=640, frame_height=480)


def _shifted(dx_px: float, dy_px: float) -> FeatureDetection:
    return FeatureDetection(
        pixel_x=320 + dx_px, pixel_y=240 + dy_px, frame_width=640, frame_height=480,
    )


MEASURED = [Position(5, 5, 31.5), Position(105, 5, 31.5), Position(5, 85, 31.5)]


# ---------------------------------------------------------------------------
# Rough registration
# ---------------------------------------------------------------------------


class TestRoughRegistration:
    def test_translation(self, model: CalibrationModel, config: MachineConfig) -> None:
        t = FakeTransport(MEASURED + [Position(5, 5, 30.25)])
        result = routines.rough_registration(t, FakePrompt(), model, config)

        assert result.completed
        assert model.rough_transform.apply(50.0, 50.0) == pytest.approx((55.0, 55.0))
        assert model.base_height == 30.25
        assert result.values["measured"] == [(5, 5), (105, 5), (5, 85)]

    def test_requires_three_fiducials(self, config: MachineConfig) -> None:
        m = CalibrationModel()
        m.load_design([Placement(1, 1)], [Fiducial(0, 0)])
        version = m.version
        with pytest.raises(PreconditionFailed):
            routines.rough_registration(FakeTransport(), FakePrompt(), m, config)
        assert m.version == version

    def test_cancel_writes_nothing(self, model: CalibrationModel, config: MachineConfig) -> None:
        version = model.version
        t = FakeTransport(MEASURED)
        result = routines.rough_registration(
            t, FakePrompt([True, False]), model, config,
        )
        assert result.outcome is Outcome.CANCELLED
        assert model.rough_transform is None
        assert model.version == version

    def test_missing_position_raises(self, model: CalibrationModel, config: MachineConfig) -> None:
        with pytest.raises(TransportError):
            routines.rough_registration(FakeTransport(), FakePrompt(), model, config)
        assert model.rough_transform is None


# ---------------------------------------------------------------------------
# Fine registration
# ---------------------------------------------------------------------------


class TestFineRegistration:
    def test_requires_rough(self, model: CalibrationModel, config: MachineConfig) -> None:
        with pytest.raises(PreconditionFailed):
            routines.fine_registration(FakeTransport(), FakeDetector(), model, config)

    def test_refines_transform(
        self, registered_model: CalibrationModel, config: MachineConfig,
    ) -> None:
        refined = [Position(5.2, 5.0, 31.5), Position(105.2, 5.0, 31.5),
                   Position(5.2, 85.0, 31.5)]
        t = FakeTransport(refined)
        det = FakeDetector([_shifted(10, 0), _centred()] * 3)
        result = routines.fine_registration(
            t, det, registered_model, config, sleep=lambda s: None,
        )

        assert result.completed
        assert det.calls == 6
        assert registered_model.active_transform is registered_model.fine_transform
        assert registered_model.fine_transform.apply(0.0, 0.0) == pytest.approx((5.2, 5.0))
        # +10 px in X at 0.02 mm/px, image Y inverted
        assert ["G91", "G0 X0.2 Y0", "G90"] in t.batches
        # travel to the rough estimate of fiducial 2
        assert ["G0 X105 Y5"] in t.batches

    def test_no_detection_fails(
        self, registered_model: CalibrationModel, config: MachineConfig,
    ) -> None:
        t = FakeTransport([Position(5, 5, 31.5)])
        det = FakeDetector([_centred(), None, None, None])
        with pytest.raises(FeatureNotDetected):
            routines.fine_registration(
                t, det, registered_model, config, sleep=lambda s: None,
            )
        assert registered_model.fine_transform is None

    def test_cancel(self, registered_model: CalibrationModel, config: MachineConfig) -> None:
        token = CancellationToken()
        token.cancel()
        result = routines.fine_registration(
            FakeTransport(), FakeDetector(), registered_model, config,
            token=token, sleep=lambda s: None,
        )
        assert result.outcome is Outcome.CANCELLED
        assert registered_model.fine_transform is None


# ---------------------------------------------------------------------------
# Tip offset and probing
# ---------------------------------------------------------------------------


class TestTipOffset:
    def test_offset_is_tip_minus_camera(
        self, registered_model: CalibrationModel, config: MachineConfig,
    ) -> None:
        t = FakeTransport([Position(5, 5, 31.5), Position(-40.0, 5.5, 28.0)])
        result = routines.calibrate_tip_offset(t, FakePrompt(), registered_model, config)

        assert result.completed
        assert registered_model.tip_offset == pytest.approx((-45.0, 0.5))
        assert ["G91", "G0 X-45 Y0", "G90"] in t.batches
        assert t.batches[-1] == ["G90", "G0 Z31.5"]

    def test_requires_fiducial(self, config: MachineConfig) -> None:
        with pytest.raises(PreconditionFailed):
            routines.calibrate_tip_offset(
                FakeTransport(), FakePrompt(), CalibrationModel(), config,
            )


class TestProbe:
    def test_probe_stores_height(
        self, registered_model: CalibrationModel, config: MachineConfig,
    ) -> None:
        registered_model.tip_offset = (-45.0, 0.0)
        t = FakeTransport([Position(0, 0, 29.8)])
        result = routines.probe_placement_height(
            t, FakePrompt(), registered_model, config, 1,
        )
        assert result.completed
        assert registered_model.placements[1].z == 29.8
        # placement 1 = (20, 10) design -> (25, 15) machine, plus tip offset
        assert ["G0 X-20 Y15"] in t.batches

    def test_requires_registration(self, model: CalibrationModel, config: MachineConfig) -> None:
        with pytest.raises(PreconditionFailed):
            routines.probe_placement_height(
                FakeTransport(), FakePrompt(), model, config, 0,
            )

    def test_bad_index(self, registered_model: CalibrationModel, config: MachineConfig) -> None:
        with pytest.raises(PreconditionFailed):
            routines.probe_placement_height(
                FakeTransport(), FakePrompt(), registered_model, config, 5,
            )

    def test_cancel_leaves_unprobed(
        self, registered_model: CalibrationModel, config: MachineConfig,
    ) -> None:
        result = routines.probe_placement_height(
            FakeTransport(), FakePrompt([False]), registered_model, config, 0,
        )
        assert result.outcome is Outcome.CANCELLED
        assert registered_model.placements[0].z is None

    def test_clear_height(self, model: CalibrationModel) -> None:
        model.set_probe_height(2, 30.0)
        routines.clear_placement_height(model, 2)
        assert model.placements[2].z is None


# ---------------------------------------------------------------------------
# Visual homing
# ---------------------------------------------------------------------------


class TestVisualHome:
    def test_sets_datum(self, config: MachineConfig) -> None:
        t = FakeTransport()
        result = routines.visual_home(
            t, FakeDetector([_shifted(0, 5), _centred()]), config,
            sleep=lambda s: None,
        )
        assert result.completed
        assert ["G0 X218 Y196"] in t.batches
        assert ["G91", "G0 X0 Y-0.1", "G90"] in t.batches
        assert t.batches[-1] == ["G92 X218 Y196"]

    def test_datum_not_found(self, config: MachineConfig) -> None:
        t = FakeTransport()
        with pytest.raises(FeatureNotDetected):
            routines.visual_home(t, FakeDetector(), config, sleep=lambda s: None)
        assert not any(b[0].startswith("G92") for b in t.batches)
