from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np

from .regions import Region
from .visualize import draw_status, is_quit_key

BOX_COLOR = (0, 255, 0)


class SelectorState(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    COMMITTED = "committed"


class InteractiveSelector:
    """
    Lets the user draw the target box on a frame with the mouse.

    Press, drag and release the left button to commit a box. A release that
    encloses no area puts the selector back to IDLE. `q` or ESC cancels.
    """

    def __init__(self, window_name: str = "TRACKING"):
        self.window_name = window_name
        self.state = SelectorState.IDLE
        self._anchor: Tuple[int, int] = (-1, -1)
        self._cursor: Tuple[int, int] = (-1, -1)
        self._committed: Optional[Region] = None
        self._frame: Optional[np.ndarray] = None

    def reset(self) -> None:
        self.state = SelectorState.IDLE
        self._anchor = (-1, -1)
        self._cursor = (-1, -1)
        self._committed = None

    @property
    def preview(self) -> Optional[Region]:
        if self.state is not SelectorState.DRAGGING:
            return None
        return Region.from_corners(*self._anchor, *self._cursor)

    def on_mouse(self, event: int, x: int, y: int, flags: int = 0, param=None) -> None:
        if event == cv2.EVENT_LBUTTONDOWN:
            self.state = SelectorState.DRAGGING
            self._anchor = (x, y)
            self._cursor = (x, y)
            self._committed = None

        elif event == cv2.EVENT_MOUSEMOVE and self.state is SelectorState.DRAGGING:
            self._cursor = (x, y)
            self._redraw()

        elif event == cv2.EVENT_LBUTTONUP and self.state is SelectorState.DRAGGING:
            self._cursor = (x, y)
            region = Region.from_corners(*self._anchor, x, y)
            if region.is_empty:
                self.state = SelectorState.IDLE
            else:
                self._committed = region
                self.state = SelectorState.COMMITTED
            self._redraw()

    def committed_region(self, frame_shape: Tuple[int, ...]) -> Optional[Region]:
        if self.state is not SelectorState.COMMITTED or self._committed is None:
            return None
        h, w = frame_shape[:2]
        region = self._committed.clamped(w, h)
        return None if region.is_empty else region

    def _redraw(self) -> None:
        if self._frame is None:
            return
        canvas = self._frame.copy()
        box = self._committed if self.state is SelectorState.COMMITTED else self.preview
        if box is not None:
            x1, y1, x2, y2 = box.xyxy
            cv2.rectangle(canvas, (x1, y1), (x2, y2), BOX_COLOR, 2)
        cv2.imshow(self.window_name, canvas)

    def await_region(self, frame_bgr: np.ndarray) -> Optional[Region]:
        """
        Block until the user commits a box on `frame_bgr` (returned clamped to
        the frame) or presses q / ESC (returns None).
        """
        self.reset()
        shown = frame_bgr.copy()
        draw_status(shown, "Draw Bounding Box on Target")
        self._frame = shown

        cv2.namedWindow(self.window_name)
        cv2.setMouseCallback(self.window_name, self.on_mouse)
        cv2.imshow(self.window_name, shown)
        try:
            while True:
                region = self.committed_region(frame_bgr.shape)
                if region is not None:
                    return region
                if self.state is SelectorState.COMMITTED:
                    # box fell entirely outside the frame
                    self.reset()
                if is_quit_key(cv2.waitKey(20)):
                    return None
        finally:
            self._frame = None
