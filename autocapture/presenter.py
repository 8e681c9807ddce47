"""
Presentation layer — OpenCV window driving a capture session.

Responsibility:
    Render the current session snapshot at a steady rate and turn key
    presses into start / cancel / reset calls on the state machine.

Key bindings:
    s, space   start
    c          cancel (while capturing)
    r          reset (after success)
    q, ESC     quit

Non-goals:
    - No capture policy; every decision belongs to the state machine.
"""

import asyncio
import logging
from typing import Tuple

import cv2

from autocapture.config import VisualizationConfig
from autocapture.session import Session, SessionStateMachine
from autocapture.visualizer import render

logger = logging.getLogger(__name__)

_KEY_ESC = 27


class OpenCvPresenter:
    """Renders session snapshots into an OpenCV window.

    Usage:
        presenter = OpenCvPresenter(machine, config.visualization)
        await presenter.run()      # returns when the user quits
        presenter.close()
    """

    def __init__(
        self,
        machine: SessionStateMachine,
        config: VisualizationConfig,
        canvas_size: Tuple[int, int] = (300, 400),
        fps: float = 30.0,
    ) -> None:
        self._machine = machine
        self._config = config
        self._canvas_size = canvas_size
        self._interval = 1.0 / fps
        self._machine.add_listener(self._on_session)

    def handle_key(self, key: int) -> bool:
        """Apply a key press. Returns False when the user asked to quit."""
        if key in (ord("q"), _KEY_ESC):
            logger.info("Quit signal received (key press).")
            return False
        if key in (ord("s"), ord(" ")):
            self._machine.start()
        elif key == ord("c"):
            self._machine.cancel()
        elif key == ord("r"):
            self._machine.reset()
        return True

    async def run(self) -> None:
        """Render loop. Yields to the event loop between frames."""
        while True:
            view = render(
                self._machine.snapshot,
                self._machine.preview_frame(),
                self._canvas_size,
                self._config,
            )
            cv2.imshow(self._config.window_name, view)
            key = cv2.waitKey(1) & 0xFF
            if not self.handle_key(key):
                break
            await asyncio.sleep(self._interval)

    def close(self) -> None:
        self._machine.remove_listener(self._on_session)
        cv2.destroyAllWindows()

    @staticmethod
    def _on_session(session: Session) -> None:
        logger.debug(
            "Session %d [%s/%s]: %s",
            session.session_id, session.phase.value,
            session.feedback_level.value, session.status_message,
        )
