"""
Local persistence of captured stills.

Responsibility:
    Store the captured face image under a key so it can be retrieved
    later, together with a small JSON sidecar describing the capture.

Layout (under StorageConfig.save_path):
    <key>.jpg    the captured still (JPEG)
    <key>.json   {"key": ..., "saved_at": ..., "width": ..., "height": ..., ...}

Writes go to a temporary file first and are moved into place, so a
reader never sees a half-written image. Saving under an existing key
replaces the previous capture.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

import cv2
import numpy as np

from autocapture.config import StorageConfig, get_project_root
from autocapture.errors import PersistenceError

logger = logging.getLogger(__name__)

_IMAGE_SUFFIX = ".jpg"
_META_SUFFIX = ".json"


class LocalImageStore:
    """Key/value image store on the local filesystem.

    Usage:
        store = LocalImageStore(config.storage)
        store.save("captured_face", image, {"confidence": 0.93})
        image = store.load("captured_face")
    """

    def __init__(self, config: StorageConfig) -> None:
        save_path = Path(config.save_path)
        if not save_path.is_absolute():
            save_path = get_project_root() / save_path
        self._root = save_path

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        return self._root / f"{key}{_IMAGE_SUFFIX}"

    def save(self, key: str, image: np.ndarray, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Write image (and metadata) under key.

        Raises:
            PersistenceError: If the image cannot be encoded or written.
        """
        if image is None or image.size == 0:
            raise PersistenceError(f"Refusing to save an empty image under '{key}'.")

        try:
            ok, encoded = cv2.imencode(_IMAGE_SUFFIX, image)
        except cv2.error as e:
            raise PersistenceError(f"Could not encode image for '{key}': {e}") from e
        if not ok:
            raise PersistenceError(f"Could not encode image for '{key}'.")

        h, w = image.shape[:2]
        payload = {
            "key": key,
            "saved_at": time.time(),
            "width": int(w),
            "height": int(h),
            **(metadata or {}),
        }

        try:
            self._root.mkdir(parents=True, exist_ok=True)
            self._write_atomic(self.path_for(key), encoded.tobytes())
            self._write_atomic(
                self._root / f"{key}{_META_SUFFIX}",
                json.dumps(payload, indent=2).encode("utf-8"),
            )
        except OSError as e:
            raise PersistenceError(f"Could not write '{key}' to {self._root}: {e}") from e

        logger.info("Captured image saved: %s (%dx%d)", self.path_for(key), w, h)

    def load(self, key: str) -> Optional[np.ndarray]:
        """Return the image stored under key, or None if there is none."""
        path = self.path_for(key)
        if not path.is_file():
            return None
        return cv2.imread(str(path))

    def load_metadata(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._root / f"{key}{_META_SUFFIX}"
        if not path.is_file():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    @staticmethod
    def _write_atomic(path: Path, data: bytes) -> None:
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
