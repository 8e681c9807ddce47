"""
Error taxonomy for the automatic face capture system.

Every error raised by a collaborator of the session state machine maps to
one of these types, and every one of them resolves to a well-defined
session phase:

    AcquisitionError   -> session stays Idle, error status shown.
    EngineUnavailable  -> session stays Capturing in a degraded "seeking" mode.
    PersistenceError   -> logged; the session still reaches Complete.
"""


class CaptureError(Exception):
    """Base class for all errors raised by the capture pipeline."""


class AcquisitionError(CaptureError):
    """The camera could not be opened, is busy, or produced no frame."""


class EngineUnavailable(CaptureError):
    """The face detection engine failed to initialize."""


class PersistenceError(CaptureError):
    """A captured still could not be written to local storage."""


__all__ = [
    "CaptureError",
    "AcquisitionError",
    "EngineUnavailable",
    "PersistenceError",
]
