from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import numpy as np
from tqdm import tqdm

from .config import PipelineConfig
from .detector import PersonDetector
from .embedding import EmbeddingExtractor
from .engine import load_detection_model, load_embedding_model
from .errors import EmptyReferenceError, SelectionCancelledError, VideoSourceError
from .matcher import IdentityMatcher
from .regions import Candidate, Region, crop
from .selector import InteractiveSelector
from .video_io import VideoReader, VideoWriter, read_image
from .visualize import Display, render_frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameResult:
    frame_index: int
    time_s: float
    num_candidates: int
    candidate: Optional[Candidate] = None
    similarity: Optional[float] = None
    decoded: bool = True

    @property
    def matched(self) -> bool:
        return self.candidate is not None

    @property
    def region(self) -> Optional[Region]:
        return None if self.candidate is None else self.candidate.region

    def to_record(self) -> dict:
        return {
            "frame": self.frame_index,
            "time_s": self.time_s,
            "decoded": self.decoded,
            "candidates": self.num_candidates,
            "matched": self.matched,
            "region": None if self.region is None else self.region.as_list(),
            "similarity": self.similarity,
            "det_conf": None if self.candidate is None else self.candidate.confidence,
        }


@dataclass
class RunSummary:
    frames_processed: int = 0
    frames_matched: int = 0
    frames_skipped: int = 0  # undecodable frames, reported as no match
    aborted: bool = False


class JsonlWriter:
    def __init__(self, path: Path):
        path.parent.mkdir(parents=True, exist_ok=True)
        self.f = path.open("w", encoding="utf-8")

    def write(self, obj: dict) -> None:
        self.f.write(json.dumps(obj, ensure_ascii=False) + "\n")

    def close(self) -> None:
        self.f.close()


class QueryReIDPipeline:
    """
    Finds one query person in every frame of a video.

    Per frame: detect people -> embed each crop -> pick the crop closest to
    the reference embedding -> draw it. Collaborators can be injected; any
    that are left out are built from the config (which loads the models).
    """

    def __init__(
        self,
        cfg: PipelineConfig,
        *,
        detector: Optional[PersonDetector] = None,
        extractor: Optional[EmbeddingExtractor] = None,
        matcher: Optional[IdentityMatcher] = None,
        display: Optional[Display] = None,
        selector: Optional[InteractiveSelector] = None,
    ):
        self.cfg = cfg

        if detector is None:
            det_model = load_detection_model(
                cfg.det_model, backend=cfg.dnn_backend, target=cfg.dnn_target, device=cfg.device
            )
            detector = PersonDetector(
                det_model,
                input_size=cfg.det_imgsz,
                conf_threshold=cfg.det_conf,
                iou_threshold=cfg.det_iou,
                person_class_id=cfg.person_class_id,
            )
        if extractor is None:
            reid_model = load_embedding_model(
                cfg.reid_model, backend=cfg.dnn_backend, target=cfg.dnn_target, device=cfg.device
            )
            extractor = EmbeddingExtractor(
                reid_model, input_size=(cfg.reid_height, cfg.reid_width), batch_size=cfg.batch_size
            )

        self.detector = detector
        self.extractor = extractor
        self.matcher = matcher if matcher is not None else IdentityMatcher(cfg.min_similarity)
        self.display = display if display is not None else Display(cfg.window_name, show=cfg.show)
        self.selector = selector if selector is not None else InteractiveSelector(cfg.window_name)

        # written once by set_reference, read-only afterwards
        self.reference: Optional[np.ndarray] = None

        self._events: Optional[JsonlWriter] = None

    def _log_event(self, kind: str, payload: dict) -> None:
        logger.info("%s %s", kind, payload)
        if self._events is not None:
            self._events.write({"ts": time.time(), "kind": kind, **payload})

    # Reference identity

    def set_reference(self, query_crop: Optional[np.ndarray]) -> np.ndarray:
        if query_crop is None or query_crop.size == 0:
            raise EmptyReferenceError("no query crop to build the reference from")
        if self.reference is not None:
            raise RuntimeError("reference identity is already set")

        ref = self.extractor.extract([query_crop])[0].copy()
        if not ref.any():
            raise EmptyReferenceError("reference embedding is degenerate (zero vector)")
        ref.flags.writeable = False
        self.reference = ref
        return ref

    def build_reference(self, first_frame: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Reference from cfg.query_path if given, otherwise from a box the user
        draws on `first_frame`.
        """
        if self.cfg.query_path is not None:
            query = read_image(self.cfg.query_path)
            source = str(self.cfg.query_path)
        else:
            if first_frame is None:
                raise EmptyReferenceError("no query image and no frame to select the target on")
            region = self.selector.await_region(first_frame)
            if region is None:
                raise SelectionCancelledError("target selection cancelled by user")
            query = crop(first_frame, region).copy()
            source = f"selection {region.as_list()}"

        ref = self.set_reference(query)
        self._log_event("REFERENCE", {"source": source, "dim": int(ref.shape[0])})
        return ref

    # Per frame

    def process_frame(self, frame_bgr: np.ndarray, frame_index: int, time_s: float = 0.0) -> FrameResult:
        candidates: List[Candidate] = self.detector.detect(frame_bgr, frame_index)
        if not candidates:
            return FrameResult(frame_index, time_s, 0)

        feats = self.extractor.extract([c.crop for c in candidates])
        m = self.matcher.match(self.reference, feats)
        if not m.matched:
            return FrameResult(frame_index, time_s, len(candidates))

        # index into this frame's own candidate list; region travels with the crop
        return FrameResult(frame_index, time_s, len(candidates), candidates[m.index], m.similarity)

    # Whole run

    def run(self) -> RunSummary:
        cfg = self.cfg
        summary = RunSummary()
        vr = VideoReader(cfg.video_path)
        vw: Optional[VideoWriter] = None
        matches: Optional[JsonlWriter] = None
        pbar: Optional[tqdm] = None

        try:
            if cfg.output_dir is not None:
                cfg.output_dir.mkdir(parents=True, exist_ok=True)
                self._events = JsonlWriter(cfg.output_dir / "events.jsonl")
                matches = JsonlWriter(cfg.output_dir / "matches.jsonl")

            self._log_event("START", {"video": str(cfg.video_path), "fps": vr.fps, "frames": vr.frame_count})

            selection_frame = None
            if self.reference is None:
                if cfg.query_path is None:
                    # the target is drawn on the first frame that decodes
                    selection_frame = vr.read()
                    while selection_frame is not None and not selection_frame.decoded:
                        selection_frame = vr.read()
                    if selection_frame is None:
                        raise VideoSourceError(f"Error reading the first frame of {cfg.video_path}")
                self.build_reference(None if selection_frame is None else selection_frame.frame_bgr)

            if cfg.output_dir is not None:
                stride = max(1, cfg.stride)
                vw = VideoWriter(cfg.output_dir / "annotated.mp4", fps=vr.fps / stride, size=(vr.width, vr.height))

            pbar = tqdm(total=vr.frame_count or None, desc="Processing", unit="frame")
            if selection_frame is not None:
                pbar.update(selection_frame.index + 1)

            for item in vr:
                pbar.update(1)
                if cfg.stride > 1 and (item.index % cfg.stride != 0):
                    continue

                if not item.decoded:
                    summary.frames_skipped += 1
                    logger.warning("frame %d could not be decoded; reporting no match", item.index)
                    if matches is not None:
                        matches.write(FrameResult(item.index, item.time_s, 0, decoded=False).to_record())
                    continue

                result = self.process_frame(item.frame_bgr, item.index, item.time_s)
                summary.frames_processed += 1
                if result.matched:
                    summary.frames_matched += 1

                annotated = render_frame(item.frame_bgr, result.region)
                if vw is not None:
                    vw.write(annotated)
                if matches is not None:
                    matches.write(result.to_record())

                if self.display.show(annotated):
                    summary.aborted = True
                    self._log_event("USER_ABORT", {"frame": item.index})
                    break
                if cfg.max_frames is not None and summary.frames_processed >= cfg.max_frames:
                    break

            self._log_event(
                "END",
                {
                    "frames": summary.frames_processed,
                    "matched": summary.frames_matched,
                    "skipped": summary.frames_skipped,
                    "aborted": summary.aborted,
                },
            )
            return summary

        finally:
            vr.release()
            if vw is not None:
                vw.release()
            if matches is not None:
                matches.close()
            if self._events is not None:
                self._events.close()
                self._events = None
            self.display.close()
            if pbar is not None:
                pbar.close()
