"""
Configuration management for the automatic face capture system.

Provides a layered configuration system with the following precedence
(highest to lowest):

    CLI arguments > Environment variables > YAML config file > Defaults

Design constraints:
    - The system MUST run with zero configuration (safe defaults only).
    - Missing or invalid values fail early and loudly.
    - No session logic, camera access, or model loading belongs here.

Non-goals:
    - No dynamic reloading.
    - No database-backed or remote configuration.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Project root resolution
# ---------------------------------------------------------------------------
# Resolved relative to this file's location: autocapture/config.py → project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def get_project_root() -> Path:
    """Return the resolved project root directory."""
    return _PROJECT_ROOT


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelConfig:
    """Face detection network files and compute settings.

    Attributes:
        prototxt_path: Path to the .prototxt network definition (relative to project root).
        weights_path: Path to the .caffemodel weights file (relative to project root).
        backend: Compute backend — 'cpu' or 'cuda'.
        mean_values: Per-channel mean subtraction values (BGR order).
        scale_factor: Pixel value scale factor applied during blob creation.
    """

    prototxt_path: str = "models/deploy.prototxt"
    weights_path: str = "models/res10_300x300_ssd_iter_140000.caffemodel"
    backend: str = "cpu"
    mean_values: Tuple[float, float, float] = (104.0, 177.0, 123.0)
    scale_factor: float = 1.0


@dataclass(frozen=True)
class DetectionConfig:
    """Options passed to the detection engine.

    Attributes:
        model: Model variant — 'fast' (reduced input blob) or 'accurate'.
        min_confidence: Faces scored below this are not reported at all.
    """

    model: str = "fast"
    min_confidence: float = 0.6


@dataclass(frozen=True)
class CaptureConfig:
    """Capture gating policy.

    Attributes:
        acceptance_threshold: Minimum best-face confidence that triggers a capture.
        dwell_seconds: How long the "captured" feedback is held before the
                       result view is revealed.
    """

    acceptance_threshold: float = 0.6
    dwell_seconds: float = 3.0


@dataclass(frozen=True)
class CameraConfig:
    """Camera / frame source configuration.

    Attributes:
        source: Webcam device index (as string) or path to a video file.
        width: Requested capture width in pixels.
        height: Requested capture height in pixels.
        mirrored: Flip frames horizontally so the preview behaves like a mirror.
        resize_width: Optional width to downscale frames. None means no resizing.
        max_consecutive_failures: Failed reads in a row before the stream is
                                  considered dead.
    """

    source: str = "0"
    width: int = 300
    height: int = 400
    mirrored: bool = True
    resize_width: Optional[int] = None
    max_consecutive_failures: int = 30


@dataclass(frozen=True)
class StorageConfig:
    """Local storage of the captured still.

    Attributes:
        save_path: Directory where captured images are written.
        key: Storage key of the captured face; each capture overwrites it.
    """

    save_path: str = "output/"
    key: str = "captured_face"


@dataclass(frozen=True)
class VisualizationConfig:
    """Visualization rendering parameters.

    Attributes:
        seeking_color: BGR border color while no face is accepted.
        detected_color: BGR border color once a face is detected.
        thickness: Oval border thickness in pixels.
        window_name: Title of the OpenCV window.
    """

    seeking_color: Tuple[int, int, int] = (69, 53, 220)
    detected_color: Tuple[int, int, int] = (69, 167, 40)
    thickness: int = 6
    window_name: str = "Face Validation"


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration.

    Aggregates all sub-configurations into a single, frozen object.
    """

    model: ModelConfig = field(default_factory=ModelConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    camera: CameraConfig = field(default_factory=CameraConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    visualization: VisualizationConfig = field(default_factory=VisualizationConfig)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

_VALID_BACKENDS = {"cpu", "cuda"}
_VALID_MODELS = {"fast", "accurate"}


def validate_config(config: AppConfig) -> None:
    """Validate configuration values. Raises ValueError on invalid state."""

    if config.model.backend not in _VALID_BACKENDS:
        raise ValueError(
            f"Invalid model.backend: '{config.model.backend}'. "
            f"Must be one of {_VALID_BACKENDS}."
        )

    if config.model.scale_factor <= 0:
        raise ValueError(
            f"model.scale_factor must be positive, "
            f"got {config.model.scale_factor}."
        )

    if config.detection.model not in _VALID_MODELS:
        raise ValueError(
            f"Invalid detection.model: '{config.detection.model}'. "
            f"Must be one of {_VALID_MODELS}."
        )

    if not (0.0 <= config.detection.min_confidence <= 1.0):
        raise ValueError(
            f"detection.min_confidence must be in [0.0, 1.0], "
            f"got {config.detection.min_confidence}."
        )

    if not (0.0 <= config.capture.acceptance_threshold <= 1.0):
        raise ValueError(
            f"capture.acceptance_threshold must be in [0.0, 1.0], "
            f"got {config.capture.acceptance_threshold}."
        )

    if config.capture.dwell_seconds < 0:
        raise ValueError(
            f"capture.dwell_seconds must not be negative, "
            f"got {config.capture.dwell_seconds}."
        )

    if config.camera.width <= 0 or config.camera.height <= 0:
        raise ValueError(
            f"camera.width and camera.height must be positive, "
            f"got {config.camera.width}x{config.camera.height}."
        )

    if config.camera.resize_width is not None and config.camera.resize_width <= 0:
        raise ValueError(
            f"camera.resize_width must be positive or None, "
            f"got {config.camera.resize_width}."
        )

    if config.camera.max_consecutive_failures <= 0:
        raise ValueError(
            f"camera.max_consecutive_failures must be positive, "
            f"got {config.camera.max_consecutive_failures}."
        )

    if not config.storage.key or any(sep in config.storage.key for sep in ("/", "\\")):
        raise ValueError(
            f"storage.key must be a non-empty name without path separators, "
            f"got '{config.storage.key}'."
        )

    if config.visualization.thickness <= 0:
        raise ValueError(
            f"visualization.thickness must be positive, "
            f"got {config.visualization.thickness}."
        )


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------

def _parse_tuple(value, expected_len: int, cast_type=float):
    """Convert a list from YAML into a tuple of the expected type and length."""
    if isinstance(value, (list, tuple)):
        if len(value) != expected_len:
            raise ValueError(
                f"Expected {expected_len} values, got {len(value)}: {value}"
            )
        return tuple(cast_type(v) for v in value)
    return value


def _parse_bool(value) -> bool:
    """Accept YAML booleans as well as env-style strings ('true', '0', ...)."""
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _build_model_config(raw: dict) -> ModelConfig:
    """Build ModelConfig from a raw YAML dict."""
    kwargs = {}
    if "prototxt_path" in raw:
        kwargs["prototxt_path"] = str(raw["prototxt_path"])
    if "weights_path" in raw:
        kwargs["weights_path"] = str(raw["weights_path"])
    if "backend" in raw:
        kwargs["backend"] = str(raw["backend"]).lower()
    if "mean_values" in raw:
        kwargs["mean_values"] = _parse_tuple(raw["mean_values"], 3, float)
    if "scale_factor" in raw:
        kwargs["scale_factor"] = float(raw["scale_factor"])
    return ModelConfig(**kwargs)


def _build_detection_config(raw: dict) -> DetectionConfig:
    """Build DetectionConfig from a raw YAML dict."""
    kwargs = {}
    if "model" in raw:
        kwargs["model"] = str(raw["model"]).lower()
    if "min_confidence" in raw:
        kwargs["min_confidence"] = float(raw["min_confidence"])
    return DetectionConfig(**kwargs)


def _build_capture_config(raw: dict) -> CaptureConfig:
    """Build CaptureConfig from a raw YAML dict."""
    kwargs = {}
    if "acceptance_threshold" in raw:
        kwargs["acceptance_threshold"] = float(raw["acceptance_threshold"])
    if "dwell_seconds" in raw:
        kwargs["dwell_seconds"] = float(raw["dwell_seconds"])
    return CaptureConfig(**kwargs)


def _build_camera_config(raw: dict) -> CameraConfig:
    """Build CameraConfig from a raw YAML dict."""
    kwargs = {}
    if "source" in raw:
        kwargs["source"] = str(raw["source"])
    if "width" in raw:
        kwargs["width"] = int(raw["width"])
    if "height" in raw:
        kwargs["height"] = int(raw["height"])
    if "mirrored" in raw:
        kwargs["mirrored"] = _parse_bool(raw["mirrored"])
    if "resize_width" in raw:
        val = raw["resize_width"]
        kwargs["resize_width"] = int(val) if val is not None else None
    if "max_consecutive_failures" in raw:
        kwargs["max_consecutive_failures"] = int(raw["max_consecutive_failures"])
    return CameraConfig(**kwargs)


def _build_storage_config(raw: dict) -> StorageConfig:
    """Build StorageConfig from a raw YAML dict."""
    kwargs = {}
    if "save_path" in raw:
        kwargs["save_path"] = str(raw["save_path"])
    if "key" in raw:
        kwargs["key"] = str(raw["key"])
    return StorageConfig(**kwargs)


def _build_visualization_config(raw: dict) -> VisualizationConfig:
    """Build VisualizationConfig from a raw YAML dict."""
    kwargs = {}
    if "seeking_color" in raw:
        kwargs["seeking_color"] = _parse_tuple(raw["seeking_color"], 3, int)
    if "detected_color" in raw:
        kwargs["detected_color"] = _parse_tuple(raw["detected_color"], 3, int)
    if "thickness" in raw:
        kwargs["thickness"] = int(raw["thickness"])
    if "window_name" in raw:
        kwargs["window_name"] = str(raw["window_name"])
    return VisualizationConfig(**kwargs)


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------

_ENV_PREFIX = "FACE_CAPTURE_"


def _apply_env_overrides(raw: dict) -> dict:
    """Apply environment variable overrides to the raw config dict.

    Environment variables follow the pattern:
        FACE_CAPTURE_MODEL_BACKEND=cuda
        FACE_CAPTURE_CAPTURE_ACCEPTANCE_THRESHOLD=0.7

    The variable name maps to the nested config key by replacing
    underscores after the section name with dots.
    """
    env_map = {
        f"{_ENV_PREFIX}MODEL_BACKEND": ("model", "backend"),
        f"{_ENV_PREFIX}DETECTION_MODEL": ("detection", "model"),
        f"{_ENV_PREFIX}DETECTION_MIN_CONFIDENCE": ("detection", "min_confidence"),
        f"{_ENV_PREFIX}CAPTURE_ACCEPTANCE_THRESHOLD": ("capture", "acceptance_threshold"),
        f"{_ENV_PREFIX}CAPTURE_DWELL_SECONDS": ("capture", "dwell_seconds"),
        f"{_ENV_PREFIX}CAMERA_SOURCE": ("camera", "source"),
        f"{_ENV_PREFIX}CAMERA_MIRRORED": ("camera", "mirrored"),
        f"{_ENV_PREFIX}CAMERA_RESIZE_WIDTH": ("camera", "resize_width"),
        f"{_ENV_PREFIX}STORAGE_SAVE_PATH": ("storage", "save_path"),
        f"{_ENV_PREFIX}STORAGE_KEY": ("storage", "key"),
    }

    for env_var, (section, key) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            raw.setdefault(section, {})[key] = value
            logger.debug("Config override from env: %s=%s", env_var, value)

    return raw


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------

def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Load and validate application configuration.

    Precedence (highest → lowest):
        Environment variables > YAML file > Hard-coded defaults

    Args:
        config_path: Path to a YAML configuration file. If None,
                     the system runs entirely on defaults.

    Returns:
        A validated, frozen AppConfig instance.

    Raises:
        FileNotFoundError: If config_path is provided but does not exist.
        ValueError: If any configuration value is invalid.
        yaml.YAMLError: If the YAML file is malformed.
    """
    raw: dict = {}

    # --- Layer 1: YAML file ---
    if config_path is not None:
        resolved = Path(config_path)
        if not resolved.is_absolute():
            resolved = _PROJECT_ROOT / resolved

        if not resolved.is_file():
            raise FileNotFoundError(
                f"Configuration file not found: {resolved}. "
                f"Provide a valid path or omit to use defaults."
            )

        logger.info("Loading config from: %s", resolved)
        with open(resolved, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    # --- Layer 2: Environment variable overrides ---
    raw = _apply_env_overrides(raw)

    # --- Build typed configs ---
    config = AppConfig(
        model=_build_model_config(raw.get("model", {})),
        detection=_build_detection_config(raw.get("detection", {})),
        capture=_build_capture_config(raw.get("capture", {})),
        camera=_build_camera_config(raw.get("camera", {})),
        storage=_build_storage_config(raw.get("storage", {})),
        visualization=_build_visualization_config(raw.get("visualization", {})),
    )

    # --- Validate ---
    validate_config(config)

    logger.debug("Configuration loaded: %s", config)
    return config
