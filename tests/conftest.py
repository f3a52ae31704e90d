"""
Shared stubs for the test suite: no model files, video files or windows are needed.
"""
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np
import pytest

from person_reid.config import PipelineConfig
from person_reid.embedding import l2_normalize
from person_reid.regions import Candidate, Region, crop
from person_reid.video_io import FrameItem


class StubModel:
    """Inference engine stand-in: run(blob) -> fn(blob), remembering every blob."""

    def __init__(self, fn: Callable[[np.ndarray], np.ndarray]):
        self.fn = fn
        self.blobs: List[np.ndarray] = []

    def run(self, blob: np.ndarray) -> np.ndarray:
        self.blobs.append(blob)
        return self.fn(blob)


def channel_stats_model() -> StubModel:
    """Embedding per image = per-channel mean and std of the preprocessed blob."""

    def fn(blob: np.ndarray) -> np.ndarray:
        flat = blob.reshape(blob.shape[0], blob.shape[1], -1)
        return np.concatenate([flat.mean(axis=2), flat.std(axis=2) + 1.0], axis=1)

    return StubModel(fn)


class StubDetector:
    """Returns fixed regions for every frame."""

    def __init__(self, regions: List[Region]):
        self.regions = regions
        self.calls = 0

    def detect(self, frame_bgr: np.ndarray, frame_index: int = 0) -> List[Candidate]:
        self.calls += 1
        return [Candidate(frame_index, r, crop(frame_bgr, r), 0.9) for r in self.regions]


class MeanColorExtractor:
    """Embedding = unit-length mean BGR colour of the crop."""

    def __init__(self):
        self.calls = 0

    def extract(self, crops) -> np.ndarray:
        self.calls += 1
        if len(crops) == 0:
            return np.zeros((0, 0), dtype=np.float32)
        means = np.stack([c.reshape(-1, 3).mean(axis=0) for c in crops])
        return l2_normalize(means)


class StubSelector:
    def __init__(self, region: Optional[Region]):
        self.region = region
        self.frames: List[np.ndarray] = []

    def await_region(self, frame_bgr: np.ndarray) -> Optional[Region]:
        self.frames.append(frame_bgr)
        return self.region


class StubDisplay:
    def __init__(self, quit_after: Optional[int] = None):
        self.frames: List[np.ndarray] = []
        self.quit_after = quit_after
        self.closed = False

    def show(self, frame_bgr: np.ndarray) -> bool:
        self.frames.append(frame_bgr)
        return self.quit_after is not None and len(self.frames) >= self.quit_after

    def close(self) -> None:
        self.closed = True


class FakeReader:
    """In-memory VideoReader; a None entry stands for a frame that failed to decode."""

    def __init__(self, frames: List[Optional[np.ndarray]], fps: float = 10.0):
        self.frames = frames
        self.fps = fps
        decoded = [f for f in frames if f is not None]
        self.height, self.width = decoded[0].shape[:2] if decoded else (0, 0)
        self.frame_count = len(frames)
        self._i = 0
        self.released = False

    def read(self) -> Optional[FrameItem]:
        if self._i >= len(self.frames):
            return None
        item = FrameItem(self._i, self._i / self.fps, self.frames[self._i])
        self._i += 1
        return item

    def __iter__(self):
        while True:
            item = self.read()
            if item is None:
                break
            yield item

    def release(self) -> None:
        self.released = True


class FakeWriter:
    instances: List["FakeWriter"] = []

    def __init__(self, path: Path, fps: float, size):
        self.path = path
        self.fps = fps
        self.size = size
        self.frames: List[np.ndarray] = []
        self.released = False
        FakeWriter.instances.append(self)

    def write(self, frame_bgr: np.ndarray) -> None:
        self.frames.append(frame_bgr)

    def release(self) -> None:
        self.released = True


RED_REGION = Region(20, 30, 40, 80)
GREEN_REGION = Region(120, 30, 40, 80)


@pytest.fixture
def two_person_frame() -> np.ndarray:
    """Black 240x320 frame with a red and a green rectangle that do not touch."""
    frame = np.zeros((240, 320, 3), dtype=np.uint8)
    x1, y1, x2, y2 = RED_REGION.xyxy
    frame[y1:y2, x1:x2] = (0, 0, 255)
    x1, y1, x2, y2 = GREEN_REGION.xyxy
    frame[y1:y2, x1:x2] = (0, 255, 0)
    return frame


@pytest.fixture
def base_config(tmp_path) -> PipelineConfig:
    return PipelineConfig(
        video_path=tmp_path / "video.mp4",
        reid_model="reid.onnx",
        det_model="yolov8n.onnx",
        show=False,
    )
