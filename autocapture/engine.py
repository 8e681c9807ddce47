"""
Detection engine — asynchronous face detection for single frames.

Public contract:
    engine.configure(EngineOptions(model=ModelVariant.FAST, min_confidence=0.6))
    result = await engine.submit(frame)      # -> DetectionResult

Constraints:
    - Input must be a BGR numpy array (as returned by OpenCV).
    - Inference runs on a dedicated single worker thread, so the event loop
      never blocks and the network is never used by two threads at once.
    - The model is loaded lazily on the first submit. If loading fails,
      every submit raises EngineUnavailable.

Non-goals:
    - No camera access, capture policy, or rendering.
    - No tracking or temporal state.
"""

import asyncio
import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

import cv2
import numpy as np

from autocapture.config import AppConfig, ModelConfig
from autocapture.detection import DetectionResult
from autocapture.errors import EngineUnavailable
from autocapture.model_loader import load_model
from autocapture.postprocessor import postprocess
from autocapture.preprocessor import input_size_for, preprocess

logger = logging.getLogger(__name__)


class ModelVariant(str, enum.Enum):
    FAST = "fast"
    ACCURATE = "accurate"


@dataclass(frozen=True)
class EngineOptions:
    """Runtime options of the detection engine.

    Attributes:
        model: Speed/accuracy trade-off of the network input.
        min_confidence: Faces scored below this are not reported.
    """

    model: ModelVariant = ModelVariant.FAST
    min_confidence: float = 0.6

    def __post_init__(self) -> None:
        if not (0.0 <= self.min_confidence <= 1.0):
            raise ValueError(
                f"min_confidence must be in [0.0, 1.0], got {self.min_confidence}."
            )

    @classmethod
    def from_config(cls, config: AppConfig) -> "EngineOptions":
        # Faces the capture gate would accept must reach it.
        return cls(
            model=ModelVariant(config.detection.model),
            min_confidence=min(
                config.detection.min_confidence,
                config.capture.acceptance_threshold,
            ),
        )


class DnnDetectionEngine:
    """Face detection engine backed by the SSD-ResNet10 OpenCV DNN model.

    Usage:
        engine = DnnDetectionEngine(config.model)
        engine.configure(EngineOptions.from_config(config))
        result = await engine.submit(frame)
        ...
        engine.close()
    """

    def __init__(
        self,
        config: ModelConfig,
        options: Optional[EngineOptions] = None,
        loader: Callable[[ModelConfig], "cv2.dnn.Net"] = load_model,
    ) -> None:
        self._config = config
        self._options = options or EngineOptions()
        self._loader = loader
        self._net = None
        self._load_error: Optional[EngineUnavailable] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="face-detect")

    @property
    def options(self) -> EngineOptions:
        return self._options

    @property
    def available(self) -> Optional[bool]:
        """True once loaded, False after a load failure, None before trying."""
        if self._net is not None:
            return True
        if self._load_error is not None:
            return False
        return None

    def configure(self, options: EngineOptions) -> None:
        """Replace the engine options. Takes effect on the next submit."""
        self._options = options
        logger.info(
            "Detection engine configured (model=%s, min_confidence=%.2f)",
            options.model.value, options.min_confidence,
        )

    async def submit(self, frame: np.ndarray) -> DetectionResult:
        """Detect faces in a single BGR frame.

        Raises:
            EngineUnavailable: If the model could not be loaded.
            TypeError: If frame is not a numpy ndarray.
            ValueError: If frame has incorrect shape or is empty.
        """
        self._validate_frame(frame)
        options = self._options
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._infer, frame, options)

    async def warm_up(self) -> bool:
        """Load the model ahead of the first frame. Returns availability."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._executor, self._ensure_net)
        except EngineUnavailable:
            return False
        return True

    def close(self) -> None:
        """Stop the inference worker. In-flight inference is left to finish."""
        self._executor.shutdown(wait=False)

    def _ensure_net(self):
        if self._net is not None:
            return self._net
        if self._load_error is not None:
            raise self._load_error
        try:
            self._net = self._loader(self._config)
        except EngineUnavailable as e:
            self._load_error = e
            logger.error("Detection engine unavailable: %s", e)
            raise
        return self._net

    def _infer(self, frame: np.ndarray, options: EngineOptions) -> DetectionResult:
        net = self._ensure_net()

        blob = preprocess(frame, self._config, input_size_for(options.model.value))
        net.setInput(blob)
        output = net.forward()

        h, w = frame.shape[:2]
        return postprocess(
            network_output=output,
            frame_width=w,
            frame_height=h,
            min_confidence=options.min_confidence,
        )

    @staticmethod
    def _validate_frame(frame: np.ndarray) -> None:
        """Validate that the input frame meets the API contract.

        Raises:
            TypeError: If frame is not a numpy ndarray.
            ValueError: If frame is empty or has wrong dimensions.
        """
        if not isinstance(frame, np.ndarray):
            raise TypeError(
                f"Expected frame to be a numpy ndarray, "
                f"got {type(frame).__name__}."
            )

        if frame.size == 0:
            raise ValueError("Frame is empty (zero size).")

        if frame.ndim != 3 or frame.shape[2] != 3:
            raise ValueError(
                f"Expected a BGR frame of shape (H, W, 3), got {frame.shape}."
            )
