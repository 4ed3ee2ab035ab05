"""Tests for G-code macro builders and camera helpers."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import FakeTransport

from paste_control.configs.loader import MachineConfig
from paste_control.hardware.macros import (
    MachineMacros,
    dispense_batch_commands,
    jog_commands,
    move_relative_commands,
)
from paste_control.hardware.prompt import ConsolePrompt
from paste_control.hardware.vision import (
    FeatureDetection,
    pixel_offset_to_mm,
    score_circle,
    select_best_circle,
)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


class TestBuilders:
    def test_jog_z_inverted(self) -> None:
        assert jog_commands("z", 1.0) == ["G91", "G0 Z-1", "G90"]
        assert jog_commands("X", -0.1) == ["G91", "G0 X-0.1", "G90"]

    def test_jog_unknown_axis(self) -> None:
        with pytest.raises(ValueError):
            jog_commands("B", 1.0)

    def test_relative_move(self) -> None:
        assert move_relative_commands(0.125, -2) == ["G91", "G0 X0.125 Y-2", "G90"]

    def test_dispense_batch_order(self) -> None:
        batch = dispense_batch_commands(
            12.3456, 7, 30.1, amount=30, retraction=1, dwell_ms=100, safe_z=31.5,
        )
        assert batch[1] == "G0 X12.3456 Y7"
        assert batch.index("G0 B-30") < batch.index("G0 B1") < batch.index("G4 P100")
        assert batch[-1] == "G0 Z31.5"


class TestMachineMacros:
    def test_peripherals(self, config: MachineConfig) -> None:
        t = FakeTransport()
        m = MachineMacros(t, config)
        m.ring_lights(False)
        m.air(True)
        m.disable_steppers()
        assert t.batches == [["M150 P0"], ["M106", "M106 P1 S255"], ["M18"]]

    def test_pressurize_cycle(self, config: MachineConfig) -> None:
        t = FakeTransport()
        m = MachineMacros(t, config)
        m.pressurize()
        m.depressurize()
        assert t.batches == [["G91", "G0 B-50", "G90"], ["G91", "G0 B50", "G90"]]

    def test_park(self, config: MachineConfig) -> None:
        t = FakeTransport()
        MachineMacros(t, config).park()
        assert t.batches == [["G90", "G0 Z31.5"], ["G0 X0 Y0"]]


class TestConsolePrompt:
    def test_jog_then_continue(self, config: MachineConfig) -> None:
        t = FakeTransport()
        answers = iter(["x+1", "z 0.5", ""])
        prompt = ConsolePrompt(MachineMacros(t, config), input_fn=lambda _: next(answers))
        assert prompt.show("Centre the camera", "Test")
        assert t.batches == [["G91", "G0 X1", "G90"], ["G91", "G0 Z-0.5", "G90"]]

    def test_machine_commands(self, config: MachineConfig) -> None:
        t = FakeTransport()
        answers = iter(["lights on", "extrude 5", "retract 2.5", "steppers off", ""])
        prompt = ConsolePrompt(MachineMacros(t, config), input_fn=lambda _: next(answers))
        assert prompt.show("Prime the syringe")
        assert t.batches == [
            ["M150 P255 R255 U255 B255"],
            ["G91", "G0 B-5", "G90"],
            ["G91", "G0 B2.5", "G90"],
            ["M18"],
        ]

    def test_jog_limited_to_increments(self, config: MachineConfig) -> None:
        t = FakeTransport()
        answers = iter(["x 0.5", "y-1", ""])
        prompt = ConsolePrompt(
            MachineMacros(t, config),
            input_fn=lambda _: next(answers),
            increments=config.motion.jog_increments_mm,
        )
        assert prompt.show("Centre the camera")
        assert t.batches == [["G91", "G0 Y-1", "G90"]]

    def test_cancel(self) -> None:
        assert not ConsolePrompt(input_fn=lambda _: "q").show("Go?")


# ---------------------------------------------------------------------------
# Vision helpers
# ---------------------------------------------------------------------------


class TestVision:
    def test_offset_inverts_image_y(self) -> None:
        det = FeatureDetection(pixel_x=330, pixel_y=250, frame_width=640, frame_height=480)
        assert pixel_offset_to_mm(det, 0.02) == pytest.approx((0.2, -0.2))
        assert pixel_offset_to_mm(det, 0.02, invert_y=False) == pytest.approx((0.2, 0.2))

    def test_centred_ideal_circle_scores_one(self) -> None:
        assert score_circle(320, 240, 20, 640, 480) == pytest.approx(1.0)

    def test_best_prefers_centre_and_size(self) -> None:
        circles = np.array([[[50, 50, 20], [322, 238, 19], [320, 240, 60]]], dtype=np.float32)
        best = select_best_circle(circles[0], 640, 480)
        assert (best.pixel_x, best.pixel_y) == (322.0, 238.0)

    def test_no_circles(self) -> None:
        assert select_best_circle(np.empty((0, 3)), 640, 480) is None
