"""
Detection data transfer objects.

    Detection        — one detected face box, produced by the engine.
    DetectionResult  — the engine's answer for a single submitted frame.

Both are frozen containers with no behavior beyond data access and
self-consistency. A DetectionResult is ephemeral: it is consumed by the
capture gate and discarded, never persisted.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple


@dataclass(frozen=True, slots=True)
class Detection:
    """A single detected face with bounding box and confidence score.

    Attributes:
        x1: Top-left x coordinate (absolute pixels).
        y1: Top-left y coordinate (absolute pixels).
        x2: Bottom-right x coordinate (absolute pixels).
        y2: Bottom-right y coordinate (absolute pixels).
        confidence: Detection confidence score in [0.0, 1.0].
    """

    x1: int
    y1: int
    x2: int
    y2: int
    confidence: float

    def to_dict(self) -> dict:
        """Return a plain dict suitable for JSON serialization."""
        return {
            "x1": self.x1,
            "y1": self.y1,
            "x2": self.x2,
            "y2": self.y2,
            "confidence": round(self.confidence, 4),
        }

    @property
    def width(self) -> int:
        return self.x2 - self.x1

    @property
    def height(self) -> int:
        return self.y2 - self.y1

    @property
    def area(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class DetectionResult:
    """Face presence assessment for one frame.

    Attributes:
        faces_found: Number of faces reported for the frame (>= 0).
        best_confidence: Confidence of the strongest face. Only meaningful
                         when faces_found > 0.
        faces: The individual face boxes, strongest first. May be empty
               even when faces_found > 0 (engines that only report counts).
    """

    faces_found: int = 0
    best_confidence: Optional[float] = None
    faces: Tuple[Detection, ...] = ()

    @classmethod
    def from_detections(cls, detections: Iterable[Detection]) -> "DetectionResult":
        """Build a result from a list of face boxes."""
        faces = tuple(sorted(detections, key=lambda d: d.confidence, reverse=True))
        if not faces:
            return cls()
        return cls(
            faces_found=len(faces),
            best_confidence=faces[0].confidence,
            faces=faces,
        )

    def normalized(self) -> "DetectionResult":
        """Return an internally consistent copy of this result.

        A confidence reported alongside zero (or a negative count of) faces
        is dropped, so "no face" always reads as faces_found == 0 with no
        confidence.
        """
        if self.faces_found <= 0:
            if self.faces_found == 0 and self.best_confidence is None and not self.faces:
                return self
            return DetectionResult()
        return self

    @property
    def has_face(self) -> bool:
        return self.faces_found > 0
