"""Shared fakes and fixtures.

No hardware is touched: the transport, operator prompt, camera detector
and serial port are all in-memory doubles.
"""

from __future__ import annotations

from collections import deque
from typing import Iterable, Sequence

import pytest

from paste_control.calibration.model import CalibrationModel, Fiducial, Placement
from paste_control.configs.loader import MachineConfig, load_config
from paste_control.geometry.affine import build_transform
from paste_control.hardware.serial_client import Position, TransportError
from paste_control.hardware.vision import FeatureDetection


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class FakeTransport:
    """Records every batch; replays scripted positions.

    Parameters
    ----------
    positions : iterable of Position
        Returned by successive ``query_machine_position`` calls.
    fail_on_batch : int | None
        1-based batch number whose ``send`` raises ``TransportError``.
    """

    def __init__(
        self,
        positions: Iterable[Position] = (),
        fail_on_batch: int | None = None,
    ) -> None:
        self.batches: list[list[str]] = []
        self.positions: deque[Position] = deque(positions)
        self.fail_on_batch = fail_on_batch
        self.on_send = None

    def send(self, commands: Sequence[str] | str) -> None:
        batch = [commands] if isinstance(commands, str) else list(commands)
        if self.fail_on_batch is not None and len(self.batches) + 1 == self.fail_on_batch:
            raise TransportError("Injected transport failure")
        self.batches.append(batch)
        if self.on_send is not None:
            self.on_send(batch)

    def query_machine_position(self) -> Position | None:
        if not self.positions:
            return None
        return self.positions.popleft()

    @property
    def lines(self) -> list[str]:
        return [line for batch in self.batches for line in batch]


class FakePrompt:
    """Answers ``show`` from a script; defaults to continue."""

    def __init__(self, answers: Iterable[bool] = ()) -> None:
        self.answers: deque[bool] = deque(answers)
        self.messages: list[str] = []

    def show(self, message: str, title: str = "") -> bool:
        self.messages.append(message)
        return self.answers.popleft() if self.answers else True


class FakeDetector:
    """Returns scripted detections (``None`` means nothing found)."""

    def __init__(self, detections: Iterable[FeatureDetection | None] = ()) -> None:
        self.detections: deque[FeatureDetection | None] = deque(detections)
        self.calls = 0

    def detect_alignment_feature(self) -> FeatureDetection | None:
        self.calls += 1
        return self.detections.popleft() if self.detections else None


class FakeSerial:
    """Minimal pyserial stand-in.

    Every written line is answered from ``replies`` (a list of lines per
    command, keyed by the command text) followed by ``ok``.  Commands in
    ``silent`` get no reply at all.
    """

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.written: list[str] = []
        self.replies: dict[str, list[str]] = {}
        self.silent: set[str] = set()
        self._rx: deque[bytes] = deque()
        self.is_open = True

    def reset_input_buffer(self) -> None:
        self._rx.clear()

    def write(self, data: bytes) -> int:
        cmd = data.decode("ascii").strip()
        self.written.append(cmd)
        if cmd not in self.silent:
            for line in self.replies.get(cmd, []):
                self._rx.append((line + "\n").encode("ascii"))
            self._rx.append(b"ok\n")
        return len(data)

    def flush(self) -> None:
        pass

    def readline(self) -> bytes:
        return self._rx.popleft() if self._rx else b""

    def close(self) -> None:
        self.is_open = False


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def config() -> MachineConfig:
    """The shipped default machine configuration."""
    return load_config()


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def fiducials() -> list[Fiducial]:
    return [Fiducial(0.0, 0.0), Fiducial(100.0, 0.0), Fiducial(0.0, 80.0)]


@pytest.fixture()
def model(fiducials: list[Fiducial]) -> CalibrationModel:
    """Five unprobed placements and a finalized fiducial triple."""
    m = CalibrationModel(default_height=31.5)
    m.load_design(
        [Placement(10.0 * i, 5.0 * i) for i in range(1, 6)],
        fiducials,
    )
    m.set_fiducials(fiducials)
    return m


@pytest.fixture()
def registered_model(model: CalibrationModel) -> CalibrationModel:
    """``model`` with a pure (+5, +5) translation as rough transform."""
    design = [(f.x, f.y) for f in model.fiducials]
    model.set_rough_transform(
        build_transform(design, [(x + 5.0, y + 5.0) for x, y in design])
    )
    model.base_height = 30.0
    return model
