"""
Tests for the session state machine.

Each scenario runs on a real event loop with fake collaborators, so the
ordering of frames, detection answers and the dwell timer is controlled
by the test.
"""

import asyncio
import threading

import numpy as np
import pytest

from conftest import settle

from autocapture.config import CaptureConfig
from autocapture.detection import DetectionResult
from autocapture.errors import AcquisitionError, EngineUnavailable
from autocapture.gate import Decision
from autocapture.session import (
    STATUS_CAPTURED,
    STATUS_COMPLETE,
    STATUS_COMPLETE_UNSAVED,
    STATUS_ENGINE_UNAVAILABLE,
    STATUS_IDLE,
    STATUS_POSITION_FACE,
    STATUS_SEARCHING,
    CapturedArtifact,
    FeedbackLevel,
    Phase,
    Session,
    SessionStateMachine,
)

FACE = DetectionResult(faces_found=1, best_confidence=0.9)
NO_FACE = DetectionResult(faces_found=0)


def test_initial_state(make_machine):
    machine = make_machine()
    snap = machine.snapshot
    assert snap.phase is Phase.IDLE
    assert snap.status_message == STATUS_IDLE
    assert snap.feedback_level is FeedbackLevel.SEEKING
    assert snap.captured_artifact is None
    assert machine.gate is None


def test_start_arms_fresh_gate(make_machine, frame_source):
    machine = make_machine()
    machine.start()

    assert machine.phase is Phase.CAPTURING
    assert machine.snapshot.status_message == STATUS_POSITION_FACE
    assert machine.snapshot.feedback_level is FeedbackLevel.SEEKING
    assert machine.gate.armed is True
    assert machine.gate.last_decision is None
    assert frame_source.started == 1


def test_acquisition_failure_stays_idle(make_machine, frame_source):
    frame_source.fail = AcquisitionError("Permission denied")
    machine = make_machine()

    machine.start()

    snap = machine.snapshot
    assert snap.phase is Phase.IDLE
    assert snap.status_message == "Camera unavailable: Permission denied"
    assert snap.status_message != STATUS_IDLE
    assert snap.error == "Permission denied"
    assert machine.gate is None


def test_retry_after_acquisition_failure_clears_error(make_machine, frame_source):
    frame_source.fail = AcquisitionError("busy")
    machine = make_machine()
    machine.start()

    frame_source.fail = None
    machine.start()

    assert machine.phase is Phase.CAPTURING
    assert machine.snapshot.error is None


def test_reject_keeps_seeking(make_machine, engine, frame_source, frame):
    async def scenario():
        machine = make_machine()
        machine.start()

        frame_source.emit(frame)
        await settle()
        engine.resolve(NO_FACE)
        await settle()

        assert machine.phase is Phase.CAPTURING
        assert machine.snapshot.status_message == STATUS_SEARCHING
        assert machine.snapshot.feedback_level is FeedbackLevel.SEEKING
        assert machine.gate.last_decision is Decision.REJECT

    asyncio.run(scenario())


def test_accept_then_complete_after_dwell(make_machine, engine, frame_source, store, frame):
    async def scenario():
        machine = make_machine(dwell_seconds=0.2)
        machine.start()

        frame_source.emit(frame)
        await settle()
        engine.resolve(FACE)
        await settle()

        snap = machine.snapshot
        assert snap.phase is Phase.PROCESSING
        assert snap.feedback_level is FeedbackLevel.BUSY
        assert snap.status_message == STATUS_CAPTURED
        assert snap.captured_artifact is None

        await asyncio.sleep(0.05)
        assert machine.phase is Phase.PROCESSING
        assert "captured_face" in store.saved

        await asyncio.sleep(0.3)
        snap = machine.snapshot
        assert snap.phase is Phase.COMPLETE
        assert snap.status_message == STATUS_COMPLETE
        assert snap.captured_artifact is not None
        assert snap.captured_artifact.image.size > 0
        assert snap.captured_artifact.persisted is True
        assert snap.captured_artifact.confidence == 0.9

    asyncio.run(scenario())


def test_camera_released_when_leaving_capturing(make_machine, engine, frame_source, frame):
    async def scenario():
        machine = make_machine()
        machine.start()
        handle = frame_source.live

        frame_source.emit(frame)
        await settle()
        engine.resolve(FACE)
        await settle()

        assert machine.phase is Phase.PROCESSING
        assert frame_source.live is None
        assert frame_source.stopped == [handle]

        await asyncio.sleep(0.1)
        assert machine.phase is Phase.COMPLETE
        assert frame_source.stopped == [handle]

    asyncio.run(scenario())


def test_example_sequence_through_machine(make_machine, frame_source, frame):
    async def scenario():
        machine = make_machine()
        machine.start()
        sid = machine.snapshot.session_id

        decisions = [
            machine.submit_result(sid, DetectionResult(faces_found=0), frame),
            machine.submit_result(sid, DetectionResult(faces_found=1, best_confidence=0.4), frame),
            machine.submit_result(sid, DetectionResult(faces_found=1, best_confidence=0.75), frame),
        ]
        assert decisions == [Decision.REJECT, Decision.REJECT, Decision.ACCEPT]

        # Results landing after the accept never reach the gate again.
        late = machine.submit_result(sid, DetectionResult(faces_found=1, best_confidence=0.9), frame)
        assert late is None
        assert machine.phase is Phase.PROCESSING
        machine.close()

    asyncio.run(scenario())


def test_one_detection_in_flight(make_machine, engine, frame_source, frame):
    async def scenario():
        machine = make_machine()
        machine.start()

        for _ in range(4):
            frame_source.emit(frame)
        await settle()

        assert len(engine.submitted) == 1
        assert machine.dropped_frames == 3

        engine.resolve(NO_FACE)
        await settle()
        frame_source.emit(frame)
        await settle()
        assert len(engine.submitted) == 2
        machine.close()

    asyncio.run(scenario())


def test_cancel_ignores_in_flight_result(make_machine, engine, frame_source, store, frame):
    async def scenario():
        machine = make_machine()
        machine.start()
        handle = frame_source.live
        old_id = machine.snapshot.session_id

        frame_source.emit(frame)
        await settle()
        machine.cancel()

        assert machine.phase is Phase.IDLE
        assert frame_source.stopped == [handle]
        assert machine.gate is None
        idle = machine.snapshot
        assert idle.session_id != old_id

        engine.resolve(FACE)
        await settle()

        assert machine.snapshot is idle
        assert store.saved == {}

    asyncio.run(scenario())


def test_late_result_does_not_leak_into_next_session(make_machine, engine, frame_source, frame):
    async def scenario():
        machine = make_machine()
        machine.start()
        frame_source.emit(frame)
        await settle()

        machine.cancel()
        machine.start()
        assert machine.phase is Phase.CAPTURING

        engine.resolve(FACE)
        await settle()

        assert machine.phase is Phase.CAPTURING
        assert machine.gate.armed is True
        assert machine.gate.last_decision is None

        # The new session can still submit its own frames.
        frame_source.emit(frame)
        await settle()
        assert len(engine.pending) == 1
        machine.close()

    asyncio.run(scenario())


def test_frames_from_cancelled_session_are_dropped(make_machine, engine, frame_source, frame):
    async def scenario():
        machine = make_machine()
        machine.start()
        stale_callback = frame_source.on_frame
        machine.cancel()

        stale_callback(None, frame)
        await settle()

        assert engine.submitted == []

    asyncio.run(scenario())


def test_reset_from_complete(make_machine, engine, frame_source, frame):
    async def scenario():
        machine = make_machine(dwell_seconds=0.01)
        machine.start()
        frame_source.emit(frame)
        await settle()
        engine.resolve(FACE)
        await asyncio.sleep(0.05)
        assert machine.phase is Phase.COMPLETE
        completed_id = machine.snapshot.session_id

        machine.reset()

        snap = machine.snapshot
        assert snap.phase is Phase.IDLE
        assert snap.captured_artifact is None
        assert snap.session_id != completed_id
        assert machine.gate is None

        machine.start()
        assert machine.gate.armed is True
        machine.close()

    asyncio.run(scenario())


def test_invalid_triggers_are_no_ops(make_machine, engine, frame_source, frame):
    async def scenario():
        machine = make_machine(dwell_seconds=0.2)

        machine.cancel()
        machine.reset()
        assert machine.phase is Phase.IDLE

        machine.start()
        machine.reset()
        assert machine.phase is Phase.CAPTURING

        frame_source.emit(frame)
        await settle()
        engine.resolve(FACE)
        await settle()
        processing = machine.snapshot
        assert processing.phase is Phase.PROCESSING

        machine.start()
        machine.cancel()
        machine.reset()
        assert machine.snapshot is processing
        assert frame_source.started == 1
        machine.close()

    asyncio.run(scenario())


def test_engine_unavailable_is_degraded_not_fatal(make_machine, engine, frame_source, frame):
    async def scenario():
        engine.error = EngineUnavailable("weights missing")
        machine = make_machine()
        machine.start()

        for _ in range(3):
            frame_source.emit(frame)
            await settle()

        snap = machine.snapshot
        assert snap.phase is Phase.CAPTURING
        assert snap.degraded is True
        assert snap.feedback_level is FeedbackLevel.SEEKING
        assert snap.status_message == STATUS_ENGINE_UNAVAILABLE
        assert len(engine.submitted) == 3

        machine.cancel()
        assert machine.phase is Phase.IDLE

    asyncio.run(scenario())


def test_unexpected_engine_error_counts_as_no_face(make_machine, engine, frame_source, frame):
    async def scenario():
        engine.error = RuntimeError("inference crashed")
        machine = make_machine()
        machine.start()

        frame_source.emit(frame)
        await settle()

        assert machine.phase is Phase.CAPTURING
        assert machine.snapshot.status_message == STATUS_SEARCHING
        machine.close()

    asyncio.run(scenario())


def test_persistence_failure_still_completes(make_machine, engine, frame_source, store, frame):
    async def scenario():
        store.fail = True
        machine = make_machine(dwell_seconds=0.01)
        machine.start()
        frame_source.emit(frame)
        await settle()
        engine.resolve(FACE)
        await asyncio.sleep(0.05)

        snap = machine.snapshot
        assert snap.phase is Phase.COMPLETE
        assert snap.captured_artifact.persisted is False
        assert snap.status_message == STATUS_COMPLETE_UNSAVED

    asyncio.run(scenario())


class ReadOnlyStore:
    def save(self, key, image, metadata=None):
        raise OSError("read-only file system")


def test_unexpected_store_error_still_completes(engine, frame_source, frame):
    async def scenario():
        machine = SessionStateMachine(
            frame_source, engine, ReadOnlyStore(), CaptureConfig(dwell_seconds=0.01),
        )
        machine.start()
        frame_source.emit(frame)
        await settle()
        engine.resolve(FACE)
        await settle()

        assert machine.phase is Phase.PROCESSING
        assert frame_source.live is None

        await asyncio.sleep(0.1)
        snap = machine.snapshot
        assert snap.phase is Phase.COMPLETE
        assert snap.captured_artifact.persisted is False
        assert snap.status_message == STATUS_COMPLETE_UNSAVED

    asyncio.run(scenario())


class SlowStore:
    """Store whose save() blocks until the test releases it."""

    def __init__(self):
        self.release = threading.Event()
        self.saved = []

    def save(self, key, image, metadata=None):
        self.release.wait(timeout=5)
        self.saved.append(key)


def test_saving_runs_off_the_loop_and_completion_waits_for_it(engine, frame_source, frame):
    store = SlowStore()

    async def scenario():
        machine = SessionStateMachine(
            frame_source, engine, store, CaptureConfig(dwell_seconds=0.01),
        )
        machine.start()
        frame_source.emit(frame)
        await settle()
        engine.resolve(FACE)
        await settle()

        assert machine.phase is Phase.PROCESSING

        await asyncio.sleep(0.05)
        assert machine.phase is Phase.PROCESSING
        assert store.saved == []

        store.release.set()
        await asyncio.sleep(0.1)
        snap = machine.snapshot
        assert snap.phase is Phase.COMPLETE
        assert snap.captured_artifact.persisted is True
        assert snap.status_message == STATUS_COMPLETE

    try:
        asyncio.run(scenario())
    finally:
        store.release.set()


def test_quick_restart_waits_for_outstanding_detection(make_machine, engine, frame_source, frame):
    async def scenario():
        machine = make_machine()
        machine.start()
        frame_source.emit(frame)
        await settle()

        machine.cancel()
        machine.start()
        frame_source.emit(frame)
        await settle()

        assert len(engine.submitted) == 1
        assert machine.dropped_frames == 1

        engine.resolve(FACE)
        await settle()
        assert machine.phase is Phase.CAPTURING
        assert machine.gate.armed is True

        frame_source.emit(frame)
        await settle()
        assert len(engine.submitted) == 2
        machine.close()

    asyncio.run(scenario())


def test_still_falls_back_to_detected_frame(make_machine, engine, frame_source, frame):
    async def scenario():
        frame_source.still_error = AcquisitionError("no frame yet")
        machine = make_machine(dwell_seconds=0.01)
        machine.start()
        frame_source.emit(frame)
        await settle()
        engine.resolve(FACE)
        await asyncio.sleep(0.05)

        artifact = machine.snapshot.captured_artifact
        assert np.array_equal(artifact.image, frame)
        assert artifact.image is not frame

    asyncio.run(scenario())


def test_close_cancels_dwell_timer(make_machine, engine, frame_source, frame):
    async def scenario():
        machine = make_machine(dwell_seconds=0.05)
        machine.start()
        frame_source.emit(frame)
        await settle()
        engine.resolve(FACE)
        await settle()

        machine.close()
        await asyncio.sleep(0.1)

        assert machine.phase is Phase.PROCESSING

    asyncio.run(scenario())


def test_listeners_see_every_phase(make_machine, engine, frame_source, frame):
    async def scenario():
        machine = make_machine(dwell_seconds=0.01)
        phases = []
        machine.add_listener(lambda s: phases.append(s.phase))

        machine.start()
        frame_source.emit(frame)
        await settle()
        engine.resolve(NO_FACE)
        await settle()
        frame_source.emit(frame)
        await settle()
        engine.resolve(FACE)
        await asyncio.sleep(0.05)
        machine.reset()

        assert phases == [
            Phase.CAPTURING,
            Phase.CAPTURING,
            Phase.PROCESSING,
            Phase.COMPLETE,
            Phase.IDLE,
        ]

    asyncio.run(scenario())


def test_failing_listener_does_not_break_machine(make_machine):
    machine = make_machine()

    def boom(_session):
        raise RuntimeError("render failed")

    machine.add_listener(boom)
    machine.start()
    assert machine.phase is Phase.CAPTURING


def test_preview_frame_follows_phase(make_machine, engine, frame_source, frame):
    async def scenario():
        machine = make_machine(dwell_seconds=0.2)
        assert machine.preview_frame() is None

        machine.start()
        assert machine.preview_frame() is frame_source.still

        frame_source.emit(frame)
        await settle()
        engine.resolve(FACE)
        await settle()
        assert machine.preview_frame() is not None
        machine.close()

    asyncio.run(scenario())


def test_artifact_only_in_complete():
    artifact = CapturedArtifact(
        key="captured_face",
        image=np.zeros((2, 2, 3), dtype=np.uint8),
        confidence=0.9,
        captured_at=0.0,
        persisted=True,
    )
    with pytest.raises(ValueError, match="captured_artifact"):
        Session(session_id=1, phase=Phase.COMPLETE)
    with pytest.raises(ValueError, match="captured_artifact"):
        Session(session_id=1, phase=Phase.PROCESSING, captured_artifact=artifact)

    assert Session(session_id=1, phase=Phase.COMPLETE, captured_artifact=artifact).phase is Phase.COMPLETE
