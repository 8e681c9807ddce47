"""
Postprocessing for the detection engine.

Turns the raw SSD output tensor into a DetectionResult: confidence
filtering, coordinate un-normalization, clamping, and dropping of
degenerate boxes.

Hard-coded:
    - SSD output tensor layout: [1, 1, N, 7] where each row is
      [batch_id, class_id, confidence, x1, y1, x2, y2] with
      coordinates normalized to [0, 1].
"""

from typing import List

import numpy as np

from autocapture.detection import Detection, DetectionResult


def postprocess(
    network_output: np.ndarray,
    frame_width: int,
    frame_height: int,
    min_confidence: float,
) -> DetectionResult:
    """Parse raw SSD output into a DetectionResult.

    Args:
        network_output: Raw output from net.forward(), shape (1, 1, N, 7).
        frame_width: Original frame width in pixels.
        frame_height: Original frame height in pixels.
        min_confidence: Faces scored below this are ignored.

    Returns:
        A DetectionResult whose faces are sorted strongest first. A result
        with faces_found == 0 when nothing passes the filter.
    """
    detections: List[Detection] = []
    raw = network_output[0, 0]

    for row in raw:
        confidence = float(row[2])
        if confidence < min_confidence:
            continue

        x1 = _clamp(int(row[3] * frame_width), frame_width)
        y1 = _clamp(int(row[4] * frame_height), frame_height)
        x2 = _clamp(int(row[5] * frame_width), frame_width)
        y2 = _clamp(int(row[6] * frame_height), frame_height)

        if x2 <= x1 or y2 <= y1:
            continue

        detections.append(Detection(x1=x1, y1=y1, x2=x2, y2=y2, confidence=confidence))

    return DetectionResult.from_detections(detections)


def _clamp(value: int, limit: int) -> int:
    return max(0, min(value, limit - 1))
