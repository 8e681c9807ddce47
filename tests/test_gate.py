"""
Tests for the capture gate.
"""

import pytest

from autocapture.detection import DetectionResult
from autocapture.gate import CaptureGate, Decision


def test_fresh_gate_is_armed():
    gate = CaptureGate()
    assert gate.armed is True
    assert gate.last_decision is None
    assert gate.acceptance_threshold == 0.6


def test_decision_sequence():
    """Only the first qualifying result is accepted."""
    gate = CaptureGate()
    results = [
        DetectionResult(faces_found=0),
        DetectionResult(faces_found=1, best_confidence=0.4),
        DetectionResult(faces_found=1, best_confidence=0.75),
        DetectionResult(faces_found=1, best_confidence=0.9),
    ]

    decisions = [gate.submit(r) for r in results]

    assert decisions == [Decision.REJECT, Decision.REJECT, Decision.ACCEPT, Decision.REJECT]


def test_threshold_is_inclusive():
    gate = CaptureGate(acceptance_threshold=0.6)
    assert gate.submit(DetectionResult(faces_found=1, best_confidence=0.6)) is Decision.ACCEPT


def test_reject_records_last_decision():
    gate = CaptureGate()
    gate.submit(DetectionResult(faces_found=1, best_confidence=0.2))
    assert gate.last_decision is Decision.REJECT
    assert gate.armed is True


def test_suppression_after_accept_changes_nothing():
    """Results after an accept are rejected and leave the state untouched."""
    gate = CaptureGate()
    assert gate.submit(DetectionResult(faces_found=2, best_confidence=0.99)) is Decision.ACCEPT

    for _ in range(50):
        assert gate.submit(DetectionResult(faces_found=1, best_confidence=1.0)) is Decision.REJECT
        assert gate.submit(DetectionResult(faces_found=0)) is Decision.REJECT

    assert gate.armed is False
    assert gate.last_decision is Decision.ACCEPT


def test_multiple_faces_are_accepted():
    gate = CaptureGate()
    assert gate.submit(DetectionResult(faces_found=3, best_confidence=0.8)) is Decision.ACCEPT


def test_confidence_without_faces_is_normalized_away():
    """A confidence reported with zero faces never triggers a capture."""
    gate = CaptureGate()
    assert gate.submit(DetectionResult(faces_found=0, best_confidence=0.99)) is Decision.REJECT
    assert gate.submit(DetectionResult(faces_found=-1, best_confidence=0.99)) is Decision.REJECT
    assert gate.armed is True


def test_face_without_confidence_is_rejected():
    gate = CaptureGate()
    assert gate.submit(DetectionResult(faces_found=1)) is Decision.REJECT


@pytest.mark.parametrize("threshold", [-0.1, 1.5])
def test_invalid_threshold(threshold):
    with pytest.raises(ValueError, match="acceptance_threshold"):
        CaptureGate(acceptance_threshold=threshold)
