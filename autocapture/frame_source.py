"""
Frame source — camera lifecycle and frame delivery.

Responsibility:
    Open a webcam (or a video file, for demos and offline runs), pump its
    frames into a callback on the event loop, and hand out still images.

Contract:
    handle = source.start(on_frame)     # raises AcquisitionError
    still = source.capture_still(handle)
    source.stop(handle)                 # idempotent, synchronous

Robustness:
    - Only one handle may be live at a time; a second start() fails with
      AcquisitionError instead of fighting over the device.
    - Unreadable webcam frames are logged and skipped. A run of
      consecutive failures ends the stream.
    - Blocking reads and the final release run on one reader thread, so a
      release never races a read that is still in progress.
"""

import asyncio
import concurrent.futures
import itertools
import logging
from typing import Callable, Optional

import cv2
import numpy as np

from autocapture.config import CameraConfig
from autocapture.errors import AcquisitionError

logger = logging.getLogger(__name__)

# Pace used for video files, whose reads return immediately.
_DEFAULT_FILE_FPS = 30.0

# Upper bound on how long stop() waits for a pending read to finish.
_RELEASE_TIMEOUT_SECONDS = 0.5


class FrameSourceHandle:
    """Token for one open camera session.

    Only the owner of the handle may stop it or capture stills from it.
    """

    def __init__(self, handle_id: int, capture, on_frame, is_device: bool, frame_interval: float) -> None:
        self.handle_id = handle_id
        self.capture = capture
        self.on_frame = on_frame
        self.is_device = is_device
        self.frame_interval = frame_interval
        self.active = True
        self.latest: Optional[np.ndarray] = None
        self.frames_read = 0
        self.task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"FrameSourceHandle(id={self.handle_id}, active={self.active}, frames={self.frames_read})"


OnFrame = Callable[[FrameSourceHandle, np.ndarray], None]


class CameraFrameSource:
    """Live frame source backed by cv2.VideoCapture.

    The source string is a webcam device index ("0") or a video file path.
    start() must be called from inside a running event loop.
    """

    def __init__(self, config: CameraConfig, capture_factory=cv2.VideoCapture) -> None:
        self._config = config
        self._capture_factory = capture_factory
        self._active: Optional[FrameSourceHandle] = None
        self._ids = itertools.count(1)
        self._reader = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="camera-reader"
        )

    @property
    def busy(self) -> bool:
        return self._active is not None

    def start(self, on_frame: OnFrame) -> FrameSourceHandle:
        """Open the camera and begin delivering frames to on_frame.

        Raises:
            AcquisitionError: If the camera is already in use, cannot be
                              opened, or access is denied.
        """
        if self._active is not None:
            raise AcquisitionError("Camera is already in use by another session.")

        source_str = str(self._config.source).strip()
        is_device = source_str.isdigit()
        source = int(source_str) if is_device else source_str

        try:
            capture = self._capture_factory(source)
        except cv2.error as e:
            raise AcquisitionError(f"Failed to open camera '{source_str}': {e}") from e

        if not capture.isOpened():
            capture.release()
            desc = f"webcam device {source}" if is_device else f"video file '{source}'"
            raise AcquisitionError(
                f"Failed to open {desc}. Check that it exists and that "
                f"camera access is permitted."
            )

        if is_device:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, self._config.width)
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self._config.height)
            frame_interval = 0.0
        else:
            fps = capture.get(cv2.CAP_PROP_FPS) or _DEFAULT_FILE_FPS
            frame_interval = 1.0 / fps

        handle = FrameSourceHandle(
            handle_id=next(self._ids),
            capture=capture,
            on_frame=on_frame,
            is_device=is_device,
            frame_interval=frame_interval,
        )
        handle.task = asyncio.get_running_loop().create_task(self._pump(handle))
        self._active = handle

        logger.info("Camera started: source=%s, handle=%d", source_str, handle.handle_id)
        return handle

    def stop(self, handle: FrameSourceHandle) -> None:
        """Stop frame delivery and release the device. Safe to call twice."""
        if not handle.active:
            return

        handle.active = False
        if handle.task is not None:
            handle.task.cancel()

        # Queued behind any in-progress read on the reader thread.
        pending = self._reader.submit(handle.capture.release)
        try:
            pending.result(timeout=_RELEASE_TIMEOUT_SECONDS)
        except concurrent.futures.TimeoutError:
            logger.warning(
                "Camera release still pending after %.1fs (handle=%d).",
                _RELEASE_TIMEOUT_SECONDS, handle.handle_id,
            )

        if self._active is handle:
            self._active = None

        logger.info("Camera stopped: handle=%d, frames=%d", handle.handle_id, handle.frames_read)

    def capture_still(self, handle: FrameSourceHandle) -> np.ndarray:
        """Return a copy of the most recent frame of a live handle.

        Raises:
            AcquisitionError: If the handle is stopped or no frame arrived yet.
        """
        if not handle.active:
            raise AcquisitionError(f"Camera handle {handle.handle_id} is no longer active.")
        if handle.latest is None:
            raise AcquisitionError("No frame has been received from the camera yet.")
        return handle.latest.copy()

    def latest_frame(self, handle: FrameSourceHandle) -> Optional[np.ndarray]:
        """Most recent frame for previews. Callers must not modify it."""
        return handle.latest if handle.active else None

    def close(self) -> None:
        """Stop any live handle and shut down the reader thread."""
        if self._active is not None:
            self.stop(self._active)
        self._reader.shutdown(wait=False)

    async def _pump(self, handle: FrameSourceHandle) -> None:
        """Read frames until the handle is stopped or the stream dies."""
        loop = asyncio.get_running_loop()
        failures = 0
        max_failures = self._config.max_consecutive_failures

        while handle.active:
            ok, frame = await loop.run_in_executor(self._reader, handle.capture.read)
            if not handle.active:
                break

            if not ok or frame is None:
                failures += 1
                if not handle.is_device:
                    logger.info("End of video reached after %d frames.", handle.frames_read)
                    break
                if failures >= max_failures:
                    logger.error(
                        "Webcam produced %d consecutive failed reads. "
                        "Stopping frame delivery.",
                        max_failures,
                    )
                    break
                logger.warning("Failed to read frame from webcam, skipping.")
                continue

            failures = 0
            frame = self._prepare(frame)
            handle.latest = frame
            handle.frames_read += 1

            try:
                handle.on_frame(handle, frame)
            except Exception:
                logger.exception("Frame callback raised; frame dropped.")

            # Yield to the loop even when reads are instant.
            await asyncio.sleep(handle.frame_interval)

    def _prepare(self, frame: np.ndarray) -> np.ndarray:
        """Mirror and downscale a raw frame according to the config."""
        if self._config.mirrored:
            frame = cv2.flip(frame, 1)

        resize_width = self._config.resize_width
        if resize_width is None:
            return frame

        h, w = frame.shape[:2]
        if w <= resize_width:
            return frame

        scale = resize_width / w
        return cv2.resize(frame, (resize_width, int(h * scale)), interpolation=cv2.INTER_AREA)
