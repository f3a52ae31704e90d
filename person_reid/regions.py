from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class Region:
    """
    Axis-aligned rectangle in frame pixels.
    x, y: top-left corner
    width, height: extent (never negative)
    """
    x: int
    y: int
    width: int
    height: int

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> "Region":
        # corners may come in any order (e.g. a drag towards the top-left)
        left, right = sorted((int(x1), int(x2)))
        top, bottom = sorted((int(y1), int(y2)))
        return cls(left, top, right - left, bottom - top)

    def clamped(self, frame_width: int, frame_height: int) -> "Region":
        x = min(max(0, self.x), frame_width)
        y = min(max(0, self.y), frame_height)
        w = max(0, min(self.width, frame_width - x))
        h = max(0, min(self.height, frame_height - y))
        return Region(x, y, w, h)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    @property
    def xyxy(self) -> Tuple[int, int, int, int]:
        return self.x, self.y, self.x + self.width, self.y + self.height

    def as_list(self) -> list:
        return [self.x, self.y, self.width, self.height]


def crop(frame: np.ndarray, region: Region) -> np.ndarray:
    """Cut `region` out of `frame` (clamped first). Returns a view."""
    h, w = frame.shape[:2]
    r = region.clamped(w, h)
    if r.is_empty:
        return np.zeros((0, 0, 3), dtype=frame.dtype)
    return frame[r.y : r.y + r.height, r.x : r.x + r.width]


@dataclass(frozen=True)
class Candidate:
    """
    One detected person in one frame.
    The crop stays attached to the region it was cut from, so a match chosen
    by content always resolves back to the right place. Equality and hashing
    use (frame_index, region) only.
    """
    frame_index: int
    region: Region
    crop: np.ndarray = field(compare=False, repr=False)
    confidence: float = field(default=1.0, compare=False)

    @property
    def key(self) -> Tuple[int, Region]:
        return self.frame_index, self.region
