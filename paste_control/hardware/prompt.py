"""Operator prompts used mid-procedure.

``Prompt.show`` blocks until the operator chooses to continue (``True``)
or cancel (``False``).  Procedures treat ``False`` as a normal
cancellation, never as an error.

``ConsolePrompt`` is the terminal implementation.  While it waits it
accepts jog commands (``x+1``, ``y-0.1``, ``z 0.05``) so the operator can
centre the camera or bring the tip to contact without leaving the prompt,
plus the paste and peripheral macros (``extrude 5``, ``pressurize``,
``lights on``, ``steppers off``).
"""

from __future__ import annotations

import logging
import math
import re
from typing import Callable, Protocol, Sequence

from paste_control.hardware.macros import MachineMacros

logger = logging.getLogger(__name__)

_JOG_RE = re.compile(r"^([xyz])\s*([+-]?\d*\.?\d+)$", re.IGNORECASE)
_AMOUNT_RE = re.compile(r"^(extrude|retract)\s+(\d*\.?\d+)$")
_CONTINUE = ("", "y", "yes", "ok", "c", "continue")
_CANCEL = ("n", "no", "q", "quit", "cancel")

_ACTIONS: dict[str, Callable[[MachineMacros], None]] = {
    "lights on": lambda m: m.ring_lights(True),
    "lights off": lambda m: m.ring_lights(False),
    "air on": lambda m: m.air(True),
    "air off": lambda m: m.air(False),
    "pressurize": MachineMacros.pressurize,
    "depressurize": MachineMacros.depressurize,
    "steppers off": MachineMacros.disable_steppers,
}

_HELP = (
    "  jog: 'x+1', 'y-0.1', 'z 0.05' | paste: 'extrude 5', 'retract 5',\n"
    "  'pressurize', 'depressurize' | 'lights on/off', 'air on/off', 'steppers off'"
)


class Prompt(Protocol):
    def show(self, message: str, title: str = "") -> bool: ...


def get_yes_no(prompt: str, default: bool = True) -> bool:
    """Prompt for a yes/no answer on the terminal."""
    hint = "Y/n" if default else "y/N"
    while True:
        raw = input(f"{prompt} [{hint}]: ").strip().lower()
        if not raw:
            return default
        if raw in ("y", "yes"):
            return True
        if raw in ("n", "no"):
            return False
        logger.warning("Please enter y or n")


def get_int_input(prompt: str, low: int, high: int) -> int | None:
    """Prompt for an integer in ``[low, high]``; empty or ``q`` returns None."""
    while True:
        raw = input(f"{prompt} [{low}-{high}, q to cancel]: ").strip().lower()
        if raw in ("", "q", "quit"):
            return None
        try:
            value = int(raw)
        except ValueError:
            logger.warning("Invalid number: %r -- try again", raw)
            continue
        if low <= value <= high:
            return value
        logger.warning("%d is outside %d..%d", value, low, high)


class ConsolePrompt:
    """Terminal prompt with inline machine commands.

    Parameters
    ----------
    macros : MachineMacros | None
        When given, jog and machine commands typed at the prompt are
        executed.
    input_fn : callable
        Line reader; ``input`` by default.
    increments : sequence of float, optional
        Allowed jog step sizes (mm).  Any step is accepted when omitted.
    """

    def __init__(
        self,
        macros: MachineMacros | None = None,
        input_fn: Callable[[str], str] = input,
        increments: Sequence[float] | None = None,
    ) -> None:
        self._macros = macros
        self._input = input_fn
        self._increments = tuple(increments) if increments else None

    def show(self, message: str, title: str = "") -> bool:
        header = f"\n{'=' * 50}\n  {title}\n{'=' * 50}" if title else ""
        if header:
            print(header)
        print(message)
        if self._macros is not None:
            print(_HELP)
            if self._increments:
                steps = ", ".join(f"{s:g}" for s in self._increments)
                print(f"  jog steps (mm): {steps}")

        while True:
            raw = self._input("[Enter] continue / [q] cancel: ").strip().lower()
            if raw in _CONTINUE:
                return True
            if raw in _CANCEL:
                logger.info("Operator cancelled at prompt: %s", title or message)
                return False
            if self._macros is not None and self._run_command(raw):
                continue
            logger.warning("Unrecognised input %r", raw)

    def _run_command(self, raw: str) -> bool:
        """Execute a jog or machine command; ``False`` if *raw* is neither."""
        m = _JOG_RE.match(raw)
        if m:
            axis, dist = m.group(1).upper(), float(m.group(2))
            if not self._allowed_step(dist):
                steps = ", ".join(f"{s:g}" for s in self._increments)
                logger.warning("Jog step %g mm not one of: %s", abs(dist), steps)
                return True
            self._macros.jog(axis, dist)
            return True

        m = _AMOUNT_RE.match(raw)
        if m:
            amount = float(m.group(2))
            if m.group(1) == "extrude":
                self._macros.extrude(amount)
            else:
                self._macros.retract(amount)
            return True

        action = _ACTIONS.get(raw)
        if action is None:
            return False
        action(self._macros)
        return True

    def _allowed_step(self, dist: float) -> bool:
        if self._increments is None:
            return True
        return any(math.isclose(abs(dist), s) for s in self._increments)
