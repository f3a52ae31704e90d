from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from person_reid.config import PipelineConfig
from person_reid.errors import ReIDError
from person_reid.pipeline import QueryReIDPipeline

logger = logging.getLogger("person_reid")


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Find a query person in every frame of a video")
    p.add_argument("--video", required=True, help="Path to input video (e.g., mp4)")
    p.add_argument("--model", required=True, help="ReID embedding model (.onnx, TorchScript .pt, or 'resnet50')")
    p.add_argument("--yolo", required=True, help="Person detector (YOLOv8 .onnx or Ultralytics .pt)")
    p.add_argument("--query", default=None, help="Path to target image. Skip to select the target in the first frame")
    p.add_argument("--output_dir", default=None, help="Write annotated.mp4, matches.jsonl and events.jsonl here")

    # Embedding
    p.add_argument("--batch_size", type=int, default=1, help="Batch size of each embedding inference")
    p.add_argument("--resize_h", type=int, default=256, help="Embedding model input height")
    p.add_argument("--resize_w", type=int, default=128, help="Embedding model input width")

    # Detector
    p.add_argument("--det_imgsz", type=int, default=640, help="Detector input side")
    p.add_argument("--conf", type=float, default=0.25, help="Person detection confidence")
    p.add_argument("--iou", type=float, default=0.45, help="NMS IoU threshold")
    p.add_argument("--person_class", type=int, default=0, help="Class index of 'person' in the detector's labels")

    # Matching
    p.add_argument("--min_similarity", type=float, default=None, help="Reject the best match below this cosine similarity")

    # Backends
    p.add_argument("--backend", type=int, default=0, help="OpenCV DNN backend id (0 = automatic)")
    p.add_argument("--target", type=int, default=0, help="OpenCV DNN target id (0 = CPU)")
    p.add_argument("--device", default="cpu", help="Torch device for .pt / resnet50 models")

    p.add_argument("--stride", type=int, default=1, help="Process every Nth frame (1 = all frames)")
    p.add_argument("--max_frames", type=int, default=None, help="Stop after this many processed frames")
    p.add_argument("--no_show", action="store_true", help="Do not open a window (requires --query)")
    p.add_argument("--log_level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    return p


def build_config(args: argparse.Namespace) -> PipelineConfig:
    return PipelineConfig(
        video_path=Path(args.video),
        reid_model=args.model,
        det_model=args.yolo,
        query_path=Path(args.query) if args.query else None,
        output_dir=Path(args.output_dir) if args.output_dir else None,

        det_imgsz=args.det_imgsz,
        det_conf=args.conf,
        det_iou=args.iou,
        person_class_id=args.person_class,

        reid_height=args.resize_h,
        reid_width=args.resize_w,
        batch_size=args.batch_size,

        min_similarity=args.min_similarity,

        dnn_backend=args.backend,
        dnn_target=args.target,
        device=args.device,

        show=not args.no_show,
        stride=max(1, args.stride),
        max_frames=args.max_frames,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_argparser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.no_show and not args.query:
        parser.error("--no_show needs --query: the target can only be drawn in a window")

    cfg = build_config(args)
    try:
        summary = QueryReIDPipeline(cfg).run()
    except ReIDError as e:
        logger.error("%s", e)
        return 1

    logger.info(
        "Done: %d frames processed, target found in %d, %d undecodable%s",
        summary.frames_processed,
        summary.frames_matched,
        summary.frames_skipped,
        " (aborted by user)" if summary.aborted else "",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
