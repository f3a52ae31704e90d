from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

from .regions import Region

TARGET_COLOR = (0, 0, 255)
STATUS_COLOR = (255, 0, 0)
QUIT_KEYS = {ord("q"), 27}


def is_quit_key(key: int) -> bool:
    return key != -1 and (key & 0xFF) in QUIT_KEYS


def draw_status(frame_bgr: np.ndarray, text: str) -> None:
    cv2.putText(frame_bgr, text, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.6, STATUS_COLOR, 2)


def draw_box_with_label(
    frame_bgr: np.ndarray,
    region: Region,
    label: str,
    color: Optional[Tuple[int, int, int]] = None,
    thickness: int = 2,
) -> None:
    if color is None:
        color = TARGET_COLOR

    h, w = frame_bgr.shape[:2]
    x1, y1, x2, y2 = region.clamped(w, h).xyxy
    x2, y2 = min(w - 1, x2), min(h - 1, y2)

    cv2.rectangle(frame_bgr, (x1, y1), (x2, y2), color, thickness)

    (tw, th), _ = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, 0.5, 2)
    pad = 4
    y_text = max(th + pad, y1 - 10)

    cv2.rectangle(
        frame_bgr,
        (x1, y_text - th - pad),
        (x1 + tw + pad, y_text + pad),
        (0, 0, 0),
        -1,
    )
    cv2.putText(
        frame_bgr,
        label,
        (x1 + 2, y_text),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.5,
        color,
        2,
        cv2.LINE_AA,
    )


def render_frame(
    frame_bgr: np.ndarray,
    region: Optional[Region],
    label: str = "Target",
    status: str = "Tracking",
) -> np.ndarray:
    """Draw the matched region (if any) and the status banner on a copy of the frame."""
    annotated = frame_bgr.copy()
    if region is not None:
        draw_box_with_label(annotated, region, label)
    draw_status(annotated, status)
    return annotated


class Display:
    """Window sink. With show=False every call is a no-op."""

    def __init__(self, window_name: str = "TRACKING", show: bool = True):
        self.window_name = window_name
        self.enabled = bool(show)

    def show(self, frame_bgr: np.ndarray) -> bool:
        """Show a frame; True when the user asked to quit."""
        if not self.enabled:
            return False
        cv2.imshow(self.window_name, frame_bgr)
        return is_quit_key(cv2.waitKey(1))

    def close(self) -> None:
        if not self.enabled:
            return
        try:
            cv2.destroyAllWindows()
        except cv2.error:
            pass
