"""
Model loading for the detection engine.

Loads the SSD face network from disk, configures the compute backend and
returns a ready-to-infer cv2.dnn.Net. Every failure is reported as
EngineUnavailable so the session can fall back to its degraded
"still seeking" mode instead of crashing.

Non-goals:
    - No automatic model downloading.
    - No fallback to alternative models.
"""

import logging
from pathlib import Path

import cv2

from autocapture.config import ModelConfig, get_project_root
from autocapture.errors import EngineUnavailable

logger = logging.getLogger(__name__)


def _resolve(path_str: str) -> Path:
    path = Path(path_str)
    if not path.is_absolute():
        path = get_project_root() / path
    return path


def load_model(config: ModelConfig) -> cv2.dnn.Net:
    """Load and configure the SSD face detection model.

    Raises:
        EngineUnavailable: If a model file is missing, unreadable, or the
                           requested backend cannot be set.
    """
    prototxt = _resolve(config.prototxt_path)
    weights = _resolve(config.weights_path)

    if not prototxt.is_file():
        raise EngineUnavailable(
            f"Model prototxt not found.\n"
            f"  Expected: {prototxt}\n"
            f"  Provide the file or update 'model.prototxt_path' in your config."
        )

    if not weights.is_file():
        raise EngineUnavailable(
            f"Model weights not found.\n"
            f"  Expected: {weights}\n"
            f"  Download the weights file and place it at the path above,\n"
            f"  or update 'model.weights_path' in your config."
        )

    logger.info("Loading model: prototxt=%s, weights=%s", prototxt, weights)
    try:
        net = cv2.dnn.readNetFromCaffe(str(prototxt), str(weights))
    except cv2.error as e:
        raise EngineUnavailable(f"OpenCV could not read the model: {e}") from e

    if config.backend == "cuda":
        logger.info("Setting CUDA backend and target.")
        try:
            net.setPreferableBackend(cv2.dnn.DNN_BACKEND_CUDA)
            net.setPreferableTarget(cv2.dnn.DNN_TARGET_CUDA)
        except cv2.error as e:
            raise EngineUnavailable(
                f"Failed to set CUDA backend. Ensure OpenCV was built with "
                f"CUDA support.\n  OpenCV error: {e}"
            ) from e
    else:
        net.setPreferableBackend(cv2.dnn.DNN_BACKEND_OPENCV)
        net.setPreferableTarget(cv2.dnn.DNN_TARGET_CPU)

    logger.info("Model loaded successfully (backend=%s).", config.backend)
    return net
