"""
Visualization for the capture UI.

Pure rendering: every function returns a new BGR image built from a
session snapshot and performs no I/O or window management.

Views:
    - placeholder  (IDLE): grey oval, "Camera ready" and any error text.
    - oval frame   (CAPTURING / PROCESSING): live or frozen frame inside an
                   oval whose border color follows the feedback level, with
                   a status pill at the bottom.
    - result       (COMPLETE): the captured still with a success banner.
"""

from typing import List, Optional, Tuple

import cv2
import numpy as np

from autocapture.config import VisualizationConfig
from autocapture.session import FeedbackLevel, Phase, Session

# Hard-coded rendering constants (cosmetic internals, not user-facing)
_FONT = cv2.FONT_HERSHEY_SIMPLEX
_FONT_SCALE = 0.45
_FONT_THICKNESS = 1
_PADDING = 8
_BACKGROUND = (248, 246, 244)
_PLACEHOLDER = (224, 224, 224)
_TEXT_DARK = (51, 51, 51)
_TEXT_MUTED = (136, 136, 136)
_PILL_IDLE = (40, 40, 40)


def border_color(level: FeedbackLevel, config: VisualizationConfig) -> Tuple[int, int, int]:
    """Red while seeking, green once a face has been detected."""
    if level is FeedbackLevel.SEEKING:
        return config.seeking_color
    return config.detected_color


def render(
    session: Session,
    frame: Optional[np.ndarray],
    size: Tuple[int, int],
    config: VisualizationConfig,
) -> np.ndarray:
    """Render the view for the session's phase.

    Args:
        session: Current session snapshot.
        frame: Live or frozen frame, if any.
        size: (width, height) of the canvas when no frame is available.
        config: Visualization parameters.
    """
    if session.phase is Phase.COMPLETE:
        return draw_result(session, config)
    if session.phase is Phase.IDLE or frame is None:
        return draw_placeholder(session, size, config)
    return draw_oval_frame(frame, session, config)


def draw_oval_frame(frame: np.ndarray, session: Session, config: VisualizationConfig) -> np.ndarray:
    """Show frame inside an oval, with a status pill over its lower part."""
    h, w = frame.shape[:2]
    canvas = np.full_like(frame, _BACKGROUND)
    center, axes = _oval_geometry(w, h, config.thickness)

    mask = np.zeros((h, w), dtype=np.uint8)
    cv2.ellipse(mask, center, axes, 0, 0, 360, 255, cv2.FILLED)
    canvas[mask > 0] = frame[mask > 0]

    color = border_color(session.feedback_level, config)
    cv2.ellipse(canvas, center, axes, 0, 0, 360, color, config.thickness, cv2.LINE_AA)

    pill = config.detected_color if session.feedback_level is FeedbackLevel.BUSY else _PILL_IDLE
    _draw_pill(canvas, session.status_message, pill, bottom=h - 3 * _PADDING)
    return canvas


def draw_placeholder(
    session: Session,
    size: Tuple[int, int],
    config: VisualizationConfig,
) -> np.ndarray:
    w, h = size
    canvas = np.full((h, w, 3), _BACKGROUND, dtype=np.uint8)
    center, axes = _oval_geometry(w, h, config.thickness)
    cv2.ellipse(canvas, center, axes, 0, 0, 360, _PLACEHOLDER, cv2.FILLED)
    cv2.ellipse(
        canvas, center, axes, 0, 0, 360,
        border_color(session.feedback_level, config), config.thickness, cv2.LINE_AA,
    )

    _draw_centered(canvas, "Camera ready", h // 2, _TEXT_MUTED, scale=0.6, thickness=2)
    lines = _wrap(session.status_message, w - 4 * _PADDING)
    for i, line in enumerate(lines):
        color = config.seeking_color if session.error else _TEXT_DARK
        _draw_centered(canvas, line, h // 2 + 30 + i * 18, color)
    return canvas


def draw_result(session: Session, config: VisualizationConfig) -> np.ndarray:
    """Captured still under a success banner."""
    artifact = session.captured_artifact
    image = artifact.image
    h, w = image.shape[:2]
    banner = 60

    canvas = np.full((h + banner, w, 3), _BACKGROUND, dtype=np.uint8)
    canvas[banner:, :] = image
    cv2.rectangle(canvas, (0, banner), (w - 1, h + banner - 1), config.detected_color, 4)

    _draw_centered(canvas, "Success!", 24, config.detected_color, scale=0.7, thickness=2)
    _draw_centered(canvas, session.status_message.replace("Success! ", ""), 48, _TEXT_MUTED)
    return canvas


def _oval_geometry(w: int, h: int, thickness: int):
    center = (w // 2, h // 2)
    axes = (max(w // 2 - thickness, 1), max(h // 2 - thickness, 1))
    return center, axes


def _draw_pill(canvas: np.ndarray, text: str, color, bottom: int) -> None:
    (text_w, text_h), _ = cv2.getTextSize(text, _FONT, _FONT_SCALE, _FONT_THICKNESS)
    w = canvas.shape[1]
    x1 = max((w - text_w) // 2 - _PADDING, 0)
    x2 = min(x1 + text_w + 2 * _PADDING, w - 1)
    y1 = bottom - text_h - 2 * _PADDING
    cv2.rectangle(canvas, (x1, y1), (x2, bottom), color, cv2.FILLED)
    cv2.putText(
        canvas, text, (x1 + _PADDING, bottom - _PADDING),
        _FONT, _FONT_SCALE, (255, 255, 255), _FONT_THICKNESS, cv2.LINE_AA,
    )


def _draw_centered(canvas, text: str, baseline_y: int, color, scale: float = _FONT_SCALE, thickness: int = _FONT_THICKNESS) -> None:
    (text_w, _), _ = cv2.getTextSize(text, _FONT, scale, thickness)
    x = max((canvas.shape[1] - text_w) // 2, 0)
    cv2.putText(canvas, text, (x, baseline_y), _FONT, scale, color, thickness, cv2.LINE_AA)


def _wrap(text: str, max_width: int) -> List[str]:
    """Greedy word wrap by rendered text width."""
    lines: List[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}".strip()
        (width, _), _ = cv2.getTextSize(candidate, _FONT, _FONT_SCALE, _FONT_THICKNESS)
        if current and width > max_width:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)
    return lines
