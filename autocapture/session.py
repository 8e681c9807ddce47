"""
Session state machine — owns the phase of one capture interaction.

Phases:
    IDLE --start--> CAPTURING --accept--> PROCESSING --dwell--> COMPLETE
    CAPTURING --cancel--> IDLE            COMPLETE --reset--> IDLE

Everything asynchronous that reaches the machine (frames, detection
results, the dwell timer) is tagged with the id of the session that
produced it. Anything tagged with another session, or arriving in a phase
where it makes no sense, is dropped. Together with the one-shot capture
gate this makes late detection callbacks harmless no matter how late
they are.

The machine is the only owner of the camera handle. It is released on
every way out of CAPTURING.

All public methods must be called on the event loop thread.
"""

import asyncio
import enum
import functools
import itertools
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

import numpy as np

from autocapture.config import CaptureConfig
from autocapture.detection import DetectionResult
from autocapture.errors import AcquisitionError, EngineUnavailable, PersistenceError
from autocapture.gate import CaptureGate, Decision

logger = logging.getLogger(__name__)


class Phase(str, enum.Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    COMPLETE = "complete"


class FeedbackLevel(str, enum.Enum):
    """Visual affordance for the presentation layer (border color, overlay)."""

    SEEKING = "seeking"
    DETECTED = "detected"
    BUSY = "busy"


STATUS_IDLE = "Camera ready. Press start to begin."
STATUS_POSITION_FACE = "Position your face in the center..."
STATUS_SEARCHING = "Searching for a face..."
STATUS_CAPTURED = "Photo captured! Please wait..."
STATUS_COMPLETE = "Success! Face detected and saved."
STATUS_COMPLETE_UNSAVED = "Success! Face detected (could not be saved)."
STATUS_ENGINE_UNAVAILABLE = "Face detector unavailable, still searching..."
STATUS_CAMERA_ERROR = "Camera unavailable: {reason}"

_TRANSITIONS = {
    (Phase.IDLE, Phase.CAPTURING),
    (Phase.CAPTURING, Phase.PROCESSING),
    (Phase.PROCESSING, Phase.COMPLETE),
    (Phase.CAPTURING, Phase.IDLE),
    (Phase.COMPLETE, Phase.IDLE),
}


@dataclass(frozen=True, eq=False)
class CapturedArtifact:
    """The still produced by a session.

    Attributes:
        key: Storage key the image was saved under.
        image: BGR still image.
        confidence: Best face confidence of the accepted detection.
        captured_at: Epoch seconds of the capture.
        persisted: Whether the image reached local storage.
    """

    key: str
    image: np.ndarray
    confidence: Optional[float]
    captured_at: float
    persisted: bool


@dataclass(frozen=True)
class Session:
    """Read-only snapshot of the current interaction.

    captured_artifact is present exactly when phase is COMPLETE.
    """

    session_id: int
    phase: Phase = Phase.IDLE
    status_message: str = STATUS_IDLE
    feedback_level: FeedbackLevel = FeedbackLevel.SEEKING
    captured_artifact: Optional[CapturedArtifact] = None
    error: Optional[str] = None
    degraded: bool = False

    def __post_init__(self) -> None:
        if (self.captured_artifact is not None) != (self.phase is Phase.COMPLETE):
            raise ValueError(
                f"captured_artifact must be set exactly in phase COMPLETE "
                f"(phase={self.phase.value}, artifact="
                f"{'set' if self.captured_artifact is not None else 'unset'})."
            )


Listener = Callable[[Session], None]


class SessionStateMachine:
    """Capture session controller.

    Usage:
        machine = SessionStateMachine(frame_source, engine, store, config.capture)
        machine.add_listener(render)
        machine.start()     # user pressed start
        ...
        machine.cancel()    # or wait for COMPLETE, then machine.reset()
        machine.close()
    """

    def __init__(
        self,
        frame_source,
        engine,
        store,
        config: Optional[CaptureConfig] = None,
        storage_key: str = "captured_face",
    ) -> None:
        self._frame_source = frame_source
        self._engine = engine
        self._store = store
        self._config = config or CaptureConfig()
        self._storage_key = storage_key

        self._ids = itertools.count(1)
        self._session = Session(session_id=next(self._ids))
        self._listeners: List[Listener] = []

        self._gate: Optional[CaptureGate] = None
        self._handle = None
        self._in_flight: Optional[asyncio.Task] = None
        self._saving: Optional[asyncio.Task] = None
        self._dwell_timer: Optional[asyncio.TimerHandle] = None
        self._pending_artifact: Optional[CapturedArtifact] = None
        self._dropped_frames = 0

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> Session:
        return self._session

    @property
    def phase(self) -> Phase:
        return self._session.phase

    @property
    def gate(self) -> Optional[CaptureGate]:
        """The live capture gate; None outside CAPTURING/PROCESSING."""
        return self._gate

    @property
    def dropped_frames(self) -> int:
        """Frames skipped because a detection was still in flight."""
        return self._dropped_frames

    def preview_frame(self) -> Optional[np.ndarray]:
        """Frame to show behind the overlay: live while capturing, the
        frozen still while processing."""
        if self._handle is not None:
            return self._frame_source.latest_frame(self._handle)
        if self._pending_artifact is not None:
            return self._pending_artifact.image
        return None

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def start(self) -> None:
        """IDLE -> CAPTURING. Stays IDLE with an error status if the
        camera cannot be acquired."""
        if self._session.phase is not Phase.IDLE:
            logger.debug("start() ignored in phase %s.", self._session.phase.value)
            return

        session_id = self._session.session_id
        try:
            handle = self._frame_source.start(functools.partial(self._on_frame, session_id))
        except AcquisitionError as e:
            logger.error("Camera acquisition failed for session %d: %s", session_id, e)
            self._publish(replace(
                self._session,
                status_message=STATUS_CAMERA_ERROR.format(reason=e),
                feedback_level=FeedbackLevel.SEEKING,
                error=str(e),
            ))
            return

        self._handle = handle
        self._gate = CaptureGate(self._config.acceptance_threshold)
        self._dropped_frames = 0
        self._publish(replace(
            self._session,
            phase=Phase.CAPTURING,
            status_message=STATUS_POSITION_FACE,
            feedback_level=FeedbackLevel.SEEKING,
            error=None,
            degraded=False,
        ))

    def cancel(self) -> None:
        """CAPTURING -> IDLE. In-flight detections are ignored when they
        land, and hold off new requests until then."""
        if self._session.phase is not Phase.CAPTURING:
            logger.debug("cancel() ignored in phase %s.", self._session.phase.value)
            return

        self._release_camera()
        self._gate = None
        self._publish(Session(session_id=next(self._ids)))

    def reset(self) -> None:
        """COMPLETE -> IDLE, dropping the captured artifact."""
        if self._session.phase is not Phase.COMPLETE:
            logger.debug("reset() ignored in phase %s.", self._session.phase.value)
            return

        self._gate = None
        self._publish(Session(session_id=next(self._ids)))

    def close(self) -> None:
        """Release the camera and cancel pending work. The machine is
        left in whatever phase it was in."""
        if self._dwell_timer is not None:
            self._dwell_timer.cancel()
            self._dwell_timer = None
        if self._in_flight is not None:
            self._in_flight.cancel()
            self._in_flight = None
        self._release_camera()

    # ------------------------------------------------------------------
    # Asynchronous inputs
    # ------------------------------------------------------------------

    def submit_result(self, session_id: int, result: DetectionResult, frame: np.ndarray) -> Optional[Decision]:
        """Feed one detection result produced for `frame` in `session_id`.

        Returns the gate decision, or None when the result was discarded
        as stale.
        """
        session = self._session
        if session_id != session.session_id or session.phase is not Phase.CAPTURING:
            logger.debug(
                "Discarding stale detection result (session=%d, current=%d, phase=%s).",
                session_id, session.session_id, session.phase.value,
            )
            return None

        decision = self._gate.submit(result)
        if decision is Decision.ACCEPT:
            self._begin_processing(result, frame)
        else:
            self._publish(replace(
                session,
                status_message=STATUS_SEARCHING,
                feedback_level=FeedbackLevel.SEEKING,
                degraded=False,
            ))
        return decision

    def _on_frame(self, session_id: int, handle, frame: np.ndarray) -> None:
        if session_id != self._session.session_id or self._session.phase is not Phase.CAPTURING:
            return
        if self._in_flight is not None:
            self._dropped_frames += 1
            return
        self._in_flight = asyncio.get_running_loop().create_task(self._detect(session_id, frame))

    async def _detect(self, session_id: int, frame: np.ndarray) -> None:
        try:
            result = await self._engine.submit(frame)
        except EngineUnavailable as e:
            self._mark_degraded(session_id, e)
            return
        except Exception:
            logger.exception("Detection failed; treating frame as faceless.")
            result = DetectionResult()
        finally:
            if self._in_flight is asyncio.current_task():
                self._in_flight = None

        self.submit_result(session_id, result, frame)

    def _mark_degraded(self, session_id: int, error: EngineUnavailable) -> None:
        session = self._session
        if session_id != session.session_id or session.phase is not Phase.CAPTURING:
            return
        if not session.degraded:
            logger.warning("Session %d continues without a detector: %s", session_id, error)
        self._publish(replace(
            session,
            status_message=STATUS_ENGINE_UNAVAILABLE,
            feedback_level=FeedbackLevel.SEEKING,
            degraded=True,
        ))

    # ------------------------------------------------------------------
    # Capture and completion
    # ------------------------------------------------------------------

    def _begin_processing(self, result: DetectionResult, frame: np.ndarray) -> None:
        session_id = self._session.session_id
        logger.info(
            "Session %d: face accepted (faces=%d, confidence=%.2f).",
            session_id, result.faces_found, result.best_confidence,
        )

        try:
            still = self._frame_source.capture_still(self._handle)
        except AcquisitionError as e:
            logger.warning("Could not grab a still (%s); using the detected frame.", e)
            still = frame.copy()

        self._release_camera()

        self._pending_artifact = CapturedArtifact(
            key=self._storage_key,
            image=still,
            confidence=result.best_confidence,
            captured_at=time.time(),
            persisted=False,
        )
        self._publish(replace(
            self._session,
            phase=Phase.PROCESSING,
            status_message=STATUS_CAPTURED,
            feedback_level=FeedbackLevel.BUSY,
        ))

        loop = asyncio.get_running_loop()
        self._dwell_timer = loop.call_later(self._config.dwell_seconds, self._complete, session_id)
        self._saving = loop.create_task(self._persist(session_id, still, result))

    async def _persist(self, session_id: int, still: np.ndarray, result: DetectionResult) -> None:
        """Write the still off the loop thread and mark the artifact saved.

        Storage failures of any kind only cost the saved copy.
        """
        metadata = {
            "session_id": session_id,
            "faces_found": result.faces_found,
            "confidence": result.best_confidence,
        }
        save = functools.partial(self._store.save, self._storage_key, still, metadata)
        try:
            await asyncio.get_running_loop().run_in_executor(None, save)
        except PersistenceError as e:
            logger.warning("Captured image was not saved: %s", e)
            return
        except Exception:
            logger.exception("Captured image was not saved.")
            return
        finally:
            if self._saving is asyncio.current_task():
                self._saving = None

        artifact = self._pending_artifact
        if artifact is not None and session_id == self._session.session_id:
            self._pending_artifact = replace(artifact, persisted=True)

    def _complete(self, session_id: int) -> None:
        self._dwell_timer = None
        if session_id != self._session.session_id or self._session.phase is not Phase.PROCESSING:
            return
        if self._saving is not None and not self._saving.done():
            # The result view reports whether the still was saved.
            self._saving.add_done_callback(lambda _: self._complete(session_id))
            return

        self._release_camera()
        artifact, self._pending_artifact = self._pending_artifact, None
        self._publish(replace(
            self._session,
            phase=Phase.COMPLETE,
            status_message=STATUS_COMPLETE if artifact.persisted else STATUS_COMPLETE_UNSAVED,
            feedback_level=FeedbackLevel.DETECTED,
            captured_artifact=artifact,
        ))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _release_camera(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        self._frame_source.stop(handle)

    def _publish(self, new: Session) -> None:
        old = self._session
        if old.phase is not new.phase and (old.phase, new.phase) not in _TRANSITIONS:
            raise RuntimeError(
                f"Invalid session transition: {old.phase.value} -> {new.phase.value}"
            )
        if new == old:
            return

        self._session = new
        if old.phase is not new.phase:
            logger.info(
                "Session %d: %s -> %s",
                new.session_id, old.phase.value, new.phase.value,
            )

        for listener in list(self._listeners):
            try:
                listener(new)
            except Exception:
                logger.exception("Session listener failed.")
