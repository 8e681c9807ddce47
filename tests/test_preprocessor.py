"""
Tests for the preprocessing module.
"""

import numpy as np
import pytest

from autocapture.config import ModelConfig
from autocapture.preprocessor import input_size_for, preprocess


def test_preprocess_valid_input():
    """Test standard preprocessing on a valid frame."""
    frame = np.zeros((400, 300, 3), dtype=np.uint8)
    frame[:, :, 1] = 255

    blob = preprocess(frame, ModelConfig())

    assert isinstance(blob, np.ndarray)
    assert blob.shape == (1, 3, 300, 300)
    assert blob.dtype == np.float32


@pytest.mark.parametrize("variant, size", [("fast", (160, 160)), ("accurate", (300, 300))])
def test_variant_sizes(variant, size):
    frame = np.zeros((400, 300, 3), dtype=np.uint8)

    blob = preprocess(frame, ModelConfig(), input_size_for(variant))

    assert blob.shape == (1, 3, size[1], size[0])


def test_unknown_variant():
    with pytest.raises(ValueError, match="variant"):
        input_size_for("turbo")


def test_preprocess_empty_frame():
    with pytest.raises(ValueError):
        preprocess(np.array([]), ModelConfig())


def test_preprocess_none_frame():
    with pytest.raises(ValueError):
        preprocess(None, ModelConfig())
