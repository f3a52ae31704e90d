from __future__ import annotations

import cv2
import numpy as np
from dataclasses import dataclass
from pathlib import Path
from collections import deque
from typing import Deque, Iterator, List, Optional, Tuple

from .errors import QueryImageError, VideoSourceError


@dataclass(frozen=True)
class FrameItem:
    index: int
    time_s: float
    frame_bgr: Optional[np.ndarray]  # None when this frame could not be decoded

    @property
    def decoded(self) -> bool:
        return self.frame_bgr is not None


class VideoReader:
    """
    Frame source over cv2.VideoCapture.

    A failed read before `frame_count` is reached is a bad frame, not the end
    of the stream: once a later frame decodes, the bad ones are yielded with
    frame_bgr=None and reading carries on. Failures that run into
    `frame_count`, or last `max_consecutive_failures` reads, are the end of
    the stream. Without a frame count any failed read ends it.
    """

    def __init__(self, path: Path, max_consecutive_failures: int = 25):
        path = Path(path)
        if not path.exists():
            raise VideoSourceError(f"Input video not found: {path}")
        self.cap = cv2.VideoCapture(str(path))
        if not self.cap.isOpened():
            raise VideoSourceError(f"Could not open video: {path}")
        self.fps = float(self.cap.get(cv2.CAP_PROP_FPS) or 30.0)
        self.width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.frame_count = int(self.cap.get(cv2.CAP_PROP_FRAME_COUNT))
        self.max_consecutive_failures = max(1, int(max_consecutive_failures))
        self.frames_skipped = 0
        self._next_index = 0
        self._pending: Deque[FrameItem] = deque()

    def _item(self, frame: Optional[np.ndarray]) -> FrameItem:
        idx = self._next_index
        self._next_index += 1
        return FrameItem(index=idx, time_s=idx / self.fps, frame_bgr=frame)

    def read(self) -> Optional[FrameItem]:
        """
        Next frame; an item with frame_bgr=None for a frame that could not be
        decoded; None at end of stream.
        """
        if self._pending:
            return self._pending.popleft()

        bad: List[FrameItem] = []
        while len(bad) < self.max_consecutive_failures:
            if self.frame_count > 0 and self._next_index >= self.frame_count:
                return None
            ok, frame = self.cap.read()
            if ok and frame is not None and frame.size > 0:
                good = self._item(frame)
                if not bad:
                    return good
                self.frames_skipped += len(bad)
                self._pending.extend(bad[1:])
                self._pending.append(good)
                return bad[0]
            if self.frame_count <= 0:
                return None
            bad.append(self._item(None))
        return None

    def __iter__(self) -> Iterator[FrameItem]:
        while True:
            item = self.read()
            if item is None:
                break
            yield item

    def release(self) -> None:
        self.cap.release()


class VideoWriter:
    def __init__(self, path: Path, fps: float, size: Tuple[int, int]):
        path.parent.mkdir(parents=True, exist_ok=True)
        fourcc = cv2.VideoWriter_fourcc(*"mp4v")
        self.writer = cv2.VideoWriter(str(path), fourcc, fps, size)
        if not self.writer.isOpened():
            raise VideoSourceError(f"Could not open video writer at: {path}")

    def write(self, frame_bgr: np.ndarray) -> None:
        self.writer.write(frame_bgr)

    def release(self) -> None:
        self.writer.release()


def read_image(path: Path) -> np.ndarray:
    path = Path(path)
    if not path.exists():
        raise QueryImageError(f"Query image not found: {path}")
    img = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if img is None or img.size == 0:
        raise QueryImageError(f"Query image could not be loaded: {path}")
    return img
