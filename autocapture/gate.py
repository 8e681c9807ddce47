"""
Capture gate — turns a stream of detection results into at most one
capture trigger per session.

The gate is the single source of truth for "has this session already
decided to capture". It does not care how many results are in flight or
how late they arrive: once it has accepted, every further submission is
rejected without touching its state. A fresh gate is built for every
session and is never re-armed.
"""

import enum
import logging
from typing import Optional

from autocapture.detection import DetectionResult

logger = logging.getLogger(__name__)

DEFAULT_ACCEPTANCE_THRESHOLD = 0.6


class Decision(str, enum.Enum):
    """Outcome of submitting one detection result to the gate."""

    REJECT = "reject"
    ACCEPT = "accept"


class CaptureGate:
    """Exactly-once capture trigger.

    Usage:
        gate = CaptureGate(acceptance_threshold=0.6)
        if gate.submit(result) is Decision.ACCEPT:
            # take the picture
    """

    def __init__(self, acceptance_threshold: float = DEFAULT_ACCEPTANCE_THRESHOLD) -> None:
        """
        Raises:
            ValueError: If the threshold is outside [0.0, 1.0].
        """
        if not (0.0 <= acceptance_threshold <= 1.0):
            raise ValueError(
                f"acceptance_threshold must be in [0.0, 1.0], "
                f"got {acceptance_threshold}."
            )
        self._threshold = acceptance_threshold
        self._armed = True
        self._last_decision: Optional[Decision] = None

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def last_decision(self) -> Optional[Decision]:
        return self._last_decision

    @property
    def acceptance_threshold(self) -> float:
        return self._threshold

    def submit(self, result: DetectionResult) -> Decision:
        """Classify one detection result.

        Returns ACCEPT only for the first result with at least one face whose
        best confidence meets the threshold. Any number of faces is accepted.
        After that the gate is disarmed and returns REJECT for everything,
        leaving last_decision at ACCEPT.
        """
        if not self._armed:
            return Decision.REJECT

        result = result.normalized()
        if (
            result.faces_found > 0
            and result.best_confidence is not None
            and result.best_confidence >= self._threshold
        ):
            self._armed = False
            self._last_decision = Decision.ACCEPT
            logger.debug(
                "Gate accepted: faces=%d, confidence=%.3f",
                result.faces_found, result.best_confidence,
            )
            return Decision.ACCEPT

        self._last_decision = Decision.REJECT
        return Decision.REJECT
