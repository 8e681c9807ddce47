"""
Automatic face capture — hands-free selfie capture driven by face detection.

Public API:
    - SessionStateMachine: owns the capture interaction (start/cancel/reset).
    - CaptureGate / Decision: exactly-once capture trigger.
    - DnnDetectionEngine / EngineOptions: asynchronous OpenCV DNN face detection.
    - CameraFrameSource: webcam frame pump.
    - LocalImageStore: local persistence of the captured still.

Usage:
    from autocapture import load_config, SessionStateMachine, ...

    machine = SessionStateMachine(frame_source, engine, store, config.capture)
    machine.start()
"""

from autocapture.config import AppConfig, load_config
from autocapture.detection import Detection, DetectionResult
from autocapture.engine import DnnDetectionEngine, EngineOptions, ModelVariant
from autocapture.errors import AcquisitionError, CaptureError, EngineUnavailable, PersistenceError
from autocapture.frame_source import CameraFrameSource
from autocapture.gate import CaptureGate, Decision
from autocapture.persistence import LocalImageStore
from autocapture.session import CapturedArtifact, FeedbackLevel, Phase, Session, SessionStateMachine

__all__ = [
    "AppConfig",
    "load_config",
    "Detection",
    "DetectionResult",
    "DnnDetectionEngine",
    "EngineOptions",
    "ModelVariant",
    "CaptureError",
    "AcquisitionError",
    "EngineUnavailable",
    "PersistenceError",
    "CameraFrameSource",
    "CaptureGate",
    "Decision",
    "LocalImageStore",
    "CapturedArtifact",
    "FeedbackLevel",
    "Phase",
    "Session",
    "SessionStateMachine",
]
