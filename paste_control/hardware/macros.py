"""Command macros -- the G-code batches the engine sends.

Each ``*_commands`` function returns a list of lines so batches can be
inspected in tests; each ``MachineMacros`` method sends one batch through
a ``Transport``.

Axis conventions:
    - B is the dispenser rotation; negative B pushes paste out.
    - Z grows *away* from the board, so "jog Z up" sends a negative move.
"""

from __future__ import annotations

import logging

from paste_control.configs.loader import MachineConfig
from paste_control.hardware.serial_client import Transport

logger = logging.getLogger(__name__)


def _fmt(v: float) -> str:
    """Compact decimal for G-code words (no trailing zeros, no ``-0``)."""
    s = f"{v:.4f}".rstrip("0").rstrip(".")
    return "0" if s in ("-0", "") else s


def _feed(mm_s: float) -> str:
    return f"F{mm_s * 60.0:.0f}"


# ---------------------------------------------------------------------------
# Command builders
# ---------------------------------------------------------------------------


def move_xy_commands(x: float, y: float) -> list[str]:
    return [f"G0 X{_fmt(x)} Y{_fmt(y)}"]


def move_z_commands(z: float) -> list[str]:
    return [f"G0 Z{_fmt(z)}"]


def move_relative_commands(dx: float, dy: float) -> list[str]:
    return ["G91", f"G0 X{_fmt(dx)} Y{_fmt(dy)}", "G90"]


def jog_commands(axis: str, distance: float) -> list[str]:
    """Relative jog; Z is inverted so positive *distance* raises the head."""
    axis = axis.upper()
    if axis not in ("X", "Y", "Z"):
        raise ValueError(f"Cannot jog axis '{axis}'")
    if axis == "Z":
        distance = -distance
    return ["G91", f"G0 {axis}{_fmt(distance)}", "G90"]


def extrude_commands(amount: float) -> list[str]:
    return ["G91", f"G0 B{_fmt(-abs(amount))}", "G90"]


def retract_commands(amount: float) -> list[str]:
    return ["G91", f"G0 B{_fmt(abs(amount))}", "G90"]


def start_slow_extrude_commands(distance: float, feed_mm_s: float) -> list[str]:
    return ["G91", f"G1 B{_fmt(-abs(distance))} {_feed(feed_mm_s)}", "G90"]


def stop_extrude_commands(travel_feed_mm_s: float) -> list[str]:
    """Quickstop (``M410``) discards the queued slow extrude."""
    return ["M410", "G90", f"G0 {_feed(travel_feed_mm_s)}"]


def retract_and_raise_commands(retraction: float, safe_z: float) -> list[str]:
    return ["G91", f"G0 B{_fmt(abs(retraction))}", "G90", f"G0 Z{_fmt(safe_z)}"]


def dispense_batch_commands(
    x: float,
    y: float,
    z: float,
    amount: float,
    retraction: float,
    dwell_ms: int,
    safe_z: float,
) -> list[str]:
    """One complete placement for an unattended run."""
    return [
        "G90",
        f"G0 X{_fmt(x)} Y{_fmt(y)}",
        f"G0 Z{_fmt(z)}",
        "G91",
        f"G0 B{_fmt(-abs(amount))}",
        f"G0 B{_fmt(abs(retraction))}",
        "G90",
        f"G4 P{int(dwell_ms)}",
        f"G0 Z{_fmt(safe_z)}",
    ]


RING_LIGHTS_ON = ["M150 P255 R255 U255 B255"]
RING_LIGHTS_OFF = ["M150 P0"]
AIR_ON = ["M106", "M106 P1 S255"]
AIR_OFF = ["M107", "M107 P1"]
DISABLE_STEPPERS = ["M18"]


# ---------------------------------------------------------------------------
# Bound macros
# ---------------------------------------------------------------------------


class MachineMacros:
    """Config-bound macro set sending through a transport.

    Parameters
    ----------
    transport : Transport
        Connected client.
    config : MachineConfig
        Supplies safe Z, feeds and dispense amounts.
    """

    def __init__(self, transport: Transport, config: MachineConfig) -> None:
        self._t = transport
        self._cfg = config

    @property
    def transport(self) -> Transport:
        return self._t

    # -- movement -----------------------------------------------------------

    def go_to(self, x: float, y: float) -> None:
        self._t.send(move_xy_commands(x, y))

    def go_to_z(self, z: float) -> None:
        self._t.send(move_z_commands(z))

    def go_to_relative(self, dx: float, dy: float) -> None:
        self._t.send(move_relative_commands(dx, dy))

    def raise_to_safe(self) -> None:
        self._t.send(["G90", *move_z_commands(self._cfg.motion.safe_z_mm)])

    def park(self) -> None:
        px, py = self._cfg.motion.park_position_mm
        self.raise_to_safe()
        self.go_to(px, py)

    def jog(self, axis: str, distance: float) -> None:
        self._t.send(jog_commands(axis, distance))

    # -- dispensing ---------------------------------------------------------

    def extrude(self, amount: float) -> None:
        self._t.send(extrude_commands(amount))

    def retract(self, amount: float) -> None:
        self._t.send(retract_commands(amount))

    def pressurize(self) -> None:
        self.extrude(self._cfg.dispense.pressure_amount_degrees)

    def depressurize(self) -> None:
        self.retract(self._cfg.dispense.pressure_amount_degrees)

    def start_slow_extrude(self) -> None:
        d = self._cfg.dispense
        self._t.send(
            start_slow_extrude_commands(
                d.slow_extrude_distance, d.slow_extrude_feed_mm_s,
            )
        )

    def stop_extrude(self) -> None:
        self._t.send(stop_extrude_commands(self._cfg.motion.travel_feed_mm_s))

    def retract_and_raise(self) -> None:
        self._t.send(
            retract_and_raise_commands(
                self._cfg.dispense.retract_and_raise_degrees,
                self._cfg.motion.safe_z_mm,
            )
        )

    # -- peripherals --------------------------------------------------------

    def ring_lights(self, on: bool) -> None:
        self._t.send(RING_LIGHTS_ON if on else RING_LIGHTS_OFF)

    def air(self, on: bool) -> None:
        self._t.send(AIR_ON if on else AIR_OFF)

    def disable_steppers(self) -> None:
        logger.info("Disabling steppers")
        self._t.send(DISABLE_STEPPERS)
