"""
Shared test doubles for the capture pipeline.

The fakes stand in for the camera, the detection engine and the image
store so session behavior can be driven step by step on a real event loop.
"""

import asyncio
from types import SimpleNamespace
from typing import List

import numpy as np
import pytest

from autocapture.config import CaptureConfig
from autocapture.errors import AcquisitionError, PersistenceError
from autocapture.session import SessionStateMachine


class FakeFrameSource:
    """Frame source whose frames are pushed by the test via emit()."""

    def __init__(self) -> None:
        self.fail = None
        self.still_error = None
        self.still = np.full((40, 30, 3), 7, dtype=np.uint8)
        self.live = None
        self.on_frame = None
        self.started = 0
        self.stopped: List[object] = []

    def start(self, on_frame):
        if self.fail is not None:
            raise self.fail
        if self.live is not None:
            raise AcquisitionError("Camera is already in use by another session.")
        self.started += 1
        self.live = SimpleNamespace(handle_id=self.started)
        self.on_frame = on_frame
        return self.live

    def stop(self, handle) -> None:
        self.stopped.append(handle)
        if self.live is handle:
            self.live = None

    def capture_still(self, handle):
        if self.still_error is not None:
            raise self.still_error
        return self.still.copy()

    def latest_frame(self, handle):
        return self.still

    def emit(self, frame) -> None:
        self.on_frame(self.live, frame)


class FakeEngine:
    """Engine whose answers are released by the test via resolve()."""

    def __init__(self) -> None:
        self.error = None
        self.submitted: List[np.ndarray] = []
        self.pending: List[asyncio.Future] = []

    async def submit(self, frame):
        self.submitted.append(frame)
        if self.error is not None:
            raise self.error
        future = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        return await future

    def resolve(self, result) -> None:
        self.pending.pop(0).set_result(result)


class FakeStore:
    def __init__(self) -> None:
        self.fail = False
        self.saved = {}

    def save(self, key, image, metadata=None) -> None:
        if self.fail:
            raise PersistenceError("disk full")
        self.saved[key] = (image, metadata)


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def frame_source() -> FakeFrameSource:
    return FakeFrameSource()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def frame() -> np.ndarray:
    return np.full((40, 30, 3), 200, dtype=np.uint8)


@pytest.fixture
def make_machine(frame_source, engine, store):
    """Build a state machine over the fakes with a short dwell period."""

    def _make(dwell_seconds: float = 0.05, threshold: float = 0.6) -> SessionStateMachine:
        return SessionStateMachine(
            frame_source,
            engine,
            store,
            CaptureConfig(acceptance_threshold=threshold, dwell_seconds=dwell_seconds),
            storage_key="captured_face",
        )

    return _make
