"""Line-oriented G-code client over a serial port.

Handles:
    - Port lifecycle (open, boot command sequence, close)
    - Per-command ``ok`` acknowledgement with a deadline
    - One deadline extension per command on ``echo:busy: processing``
    - An *inspect buffer* holding every non-ack line received, used to
      parse position reports and sensor replies
    - Position queries (``M114`` by default) parsed from the buffer

Every call blocks until the firmware acknowledges; the engine never has
more than one command in flight.

All timeouts come from ``MachineConfig.connection``.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Protocol, Sequence

import serial

from paste_control.configs.loader import ConnectionConfig

logger = logging.getLogger(__name__)

ACK = "ok"
BUSY_NOTICE = "echo:busy: processing"

# Marlin M114 style: "X:10.00 Y:20.00 Z:31.50 A:0.00 B:-30.00 Count ..."
POSITION_RE = re.compile(
    r"X:\s*(-?[\d.]+)\s+Y:\s*(-?[\d.]+)\s+Z:\s*(-?[\d.]+)"
    r"\s+A:\s*(-?[\d.]+)\s+B:\s*(-?[\d.]+)"
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class TransportError(Exception):
    """Base exception for all transport errors."""

    pass


class TransportConnectionError(TransportError):
    """Port could not be opened, or is not open when a command is sent."""

    pass


class AckTimeout(TransportError):
    """A command was not acknowledged before its deadline."""

    pass


class CommandRejected(TransportError):
    """Firmware answered a command with an ``Error:`` line."""

    pass


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Position:
    """Machine position in millimetres (A/B are rotary axes)."""

    x: float
    y: float
    z: float
    a: float = 0.0
    b: float = 0.0

    @classmethod
    def parse(cls, line: str) -> Position | None:
        """Parse a position report line; ``None`` if it does not match."""
        m = POSITION_RE.search(line)
        if m is None:
            return None
        x, y, z, a, b = (float(v) for v in m.groups())
        return cls(x=x, y=y, z=z, a=a, b=b)


class Transport(Protocol):
    """What the calibration procedures and job executor need from a machine."""

    def send(self, commands: Sequence[str] | str) -> None: ...

    def query_machine_position(self) -> Position | None: ...


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class SerialClient:
    """Blocking G-code client for a Marlin-style controller.

    Parameters
    ----------
    port : str
        Serial device, e.g. ``/dev/ttyACM0``.
    baudrate : int
        Line speed.
    ack_timeout : float
        Seconds to wait for ``ok`` after each command.
    read_timeout : float
        ``serial.Serial`` readline timeout; bounds how often the deadline
        is re-checked.
    busy_extensions : int
        How many times a busy notice may restart the ack deadline.
    position_query : str
        Command that makes the firmware print its position.
    boot_commands : iterable of str
        Sent once, in order, right after the port opens.
    serial_factory : callable
        Returns an open ``serial.Serial``-like object.  Tests inject a
        fake port here.

    Examples
    --------
    >>> with SerialClient("/dev/ttyACM0") as client:
    ...     client.send(["G90", "G0 X10 Y10"])
    ...     pos = client.query_machine_position()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = 115200,
        ack_timeout: float = 5.0,
        read_timeout: float = 0.1,
        busy_extensions: int = 1,
        position_query: str = "M114",
        boot_commands: Iterable[str] = (),
        serial_factory: Callable[..., Any] = serial.Serial,
    ) -> None:
        self.port = port
        self.baudrate = baudrate
        self.ack_timeout = ack_timeout
        self.read_timeout = read_timeout
        self.busy_extensions = busy_extensions
        self.position_query = position_query
        self.boot_commands = tuple(boot_commands)

        self._serial_factory = serial_factory
        self._ser: Any = None
        self._inspect: list[str] = []

    @classmethod
    def from_config(
        cls,
        cfg: ConnectionConfig,
        serial_factory: Callable[..., Any] = serial.Serial,
    ) -> SerialClient:
        boot = list(cfg.boot_commands)
        if cfg.lights_on_connect:
            boot.append("M150 P255 R255 U255 B255")
        return cls(
            port=cfg.port,
            baudrate=cfg.baudrate,
            ack_timeout=cfg.ack_timeout_s,
            read_timeout=cfg.read_timeout_s,
            busy_extensions=cfg.busy_extensions,
            position_query=cfg.position_query,
            boot_commands=boot,
            serial_factory=serial_factory,
        )

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._ser is not None and bool(getattr(self._ser, "is_open", True))

    def connect(self) -> None:
        """Open the port and send the boot command sequence.

        Raises
        ------
        TransportConnectionError
            If the port cannot be opened.
        AckTimeout
            If a boot command is not acknowledged.
        """
        logger.info("Opening %s @ %d baud", self.port, self.baudrate)
        try:
            self._ser = self._serial_factory(
                port=self.port,
                baudrate=self.baudrate,
                timeout=self.read_timeout,
                write_timeout=self.ack_timeout,
            )
        except (serial.SerialException, OSError) as exc:
            self._ser = None
            raise TransportConnectionError(
                f"Cannot open serial port {self.port}: {exc}"
            ) from exc

        self._ser.reset_input_buffer()
        self._inspect.clear()
        if self.boot_commands:
            logger.info("Sending %d boot commands", len(self.boot_commands))
            try:
                self.send(self.boot_commands)
            except TransportError:
                self.disconnect()
                raise
        logger.info("Connected to %s", self.port)

    def disconnect(self) -> None:
        """Close the port; safe to call when already closed."""
        if self._ser is not None:
            try:
                self._ser.close()
            except (serial.SerialException, OSError) as exc:
                logger.warning("Error closing %s: %s", self.port, exc)
            self._ser = None
            logger.info("Disconnected from %s", self.port)

    # ------------------------------------------------------------------
    # Inspect buffer
    # ------------------------------------------------------------------

    @property
    def inspect_buffer(self) -> list[str]:
        """Copy of the non-ack lines received since the last clear."""
        return list(self._inspect)

    def clear_inspect_buffer(self) -> None:
        self._inspect.clear()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def send(self, commands: Sequence[str] | str) -> None:
        """Send one or more commands, each blocking until ``ok``.

        Parameters
        ----------
        commands : str | sequence of str
            A single command or a batch sent strictly in order.

        Raises
        ------
        TransportConnectionError
            If the port is not open or a write fails.
        AckTimeout
            If a command is not acknowledged in time.
        CommandRejected
            If the firmware reports an error for a command.
        """
        batch = [commands] if isinstance(commands, str) else list(commands)
        for cmd in batch:
            self._send_line(cmd)

    def _send_line(self, cmd: str) -> None:
        if self._ser is None:
            raise TransportConnectionError("Not connected to machine")
        cmd = cmd.strip()
        if not cmd:
            return

        try:
            self._ser.write((cmd + "\n").encode("ascii"))
            self._ser.flush()
        except (serial.SerialException, OSError) as exc:
            raise TransportConnectionError(
                f"Write failed for {cmd!r}: {exc}"
            ) from exc
        logger.debug("-> %s", cmd)

        deadline = time.monotonic() + self.ack_timeout
        extensions_left = self.busy_extensions
        while True:
            if time.monotonic() > deadline:
                raise AckTimeout(
                    f"No 'ok' within {self.ack_timeout:.1f}s for {cmd!r}"
                )

            line = self._readline()
            if not line:
                continue

            low = line.lower()
            if low == ACK:
                return
            if line == BUSY_NOTICE:
                if extensions_left > 0:
                    extensions_left -= 1
                    deadline = time.monotonic() + self.ack_timeout
                    logger.debug("Busy notice; ack deadline extended for %r", cmd)
                continue
            if low.startswith("error:"):
                raise CommandRejected(f"{line} (while running {cmd!r})")

            self._inspect.append(line)

    def _readline(self) -> str:
        try:
            raw = self._ser.readline()
        except (serial.SerialException, OSError) as exc:
            raise TransportConnectionError(f"Read failed: {exc}") from exc
        line = raw.decode("ascii", errors="replace").strip()
        if line:
            logger.debug("<- %s", line)
        return line

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    def query_machine_position(self) -> Position | None:
        """Ask the firmware for its position and parse the report.

        Returns
        -------
        Position | None
            The first matching report in the inspect buffer, or ``None``
            when the firmware printed no position line.
        """
        self.clear_inspect_buffer()
        self.send(self.position_query)
        for line in self._inspect:
            pos = Position.parse(line)
            if pos is not None:
                return pos
        logger.warning("No position report in %d buffered lines", len(self._inspect))
        return None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> SerialClient:
        self.connect()
        return self

    def __exit__(self, *args: Any) -> None:
        self.disconnect()
