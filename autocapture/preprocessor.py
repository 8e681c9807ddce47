"""
Preprocessing for the detection engine.

Converts a BGR camera frame into the 4D blob expected by the SSD face
network. The blob size depends on the model variant: 'fast' trades some
recall on small faces for a quarter of the inference cost.
"""

from typing import Dict, Tuple

import cv2
import numpy as np

from autocapture.config import ModelConfig

# Blob (width, height) per model variant. The network is trained at 300x300.
VARIANT_INPUT_SIZES: Dict[str, Tuple[int, int]] = {
    "fast": (160, 160),
    "accurate": (300, 300),
}


def input_size_for(variant: str) -> Tuple[int, int]:
    """Return the blob size for a model variant.

    Raises:
        ValueError: If the variant is unknown.
    """
    try:
        return VARIANT_INPUT_SIZES[variant]
    except KeyError:
        raise ValueError(
            f"Unknown model variant '{variant}'. "
            f"Expected one of {sorted(VARIANT_INPUT_SIZES)}."
        ) from None


def preprocess(
    frame: np.ndarray,
    config: ModelConfig,
    input_size: Tuple[int, int] = VARIANT_INPUT_SIZES["accurate"],
) -> np.ndarray:
    """Convert a raw BGR frame into a DNN input blob.

    Returns:
        A float32 array of shape (1, 3, H, W).

    Raises:
        ValueError: If the frame is empty.
    """
    if frame is None or frame.size == 0:
        raise ValueError(
            "Cannot preprocess an empty frame. "
            "Ensure the camera is providing valid frames."
        )

    return cv2.dnn.blobFromImage(
        image=frame,
        scalefactor=config.scale_factor,
        size=input_size,
        mean=config.mean_values,
        swapRB=False,  # camera frames are BGR, as is the Caffe model
        crop=False,
    )
