from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class PipelineConfig:
    video_path: Path
    reid_model: str                   # .onnx / TorchScript path, or "resnet50"
    det_model: str                    # YOLOv8 .onnx or Ultralytics .pt

    query_path: Optional[Path] = None  # None -> draw the target on the first frame
    output_dir: Optional[Path] = None  # None -> no artifacts written

    # Detector (YOLOv8 raw head)
    det_imgsz: int = 640
    det_conf: float = 0.25
    det_iou: float = 0.45
    person_class_id: int = 0          # COCO label order

    # Embedding model
    reid_height: int = 256
    reid_width: int = 128
    batch_size: int = 1

    # Matching (None = always take the top-1 candidate)
    min_similarity: Optional[float] = None

    # Inference backends
    dnn_backend: int = 0              # cv2.dnn.DNN_BACKEND_DEFAULT
    dnn_target: int = 0               # cv2.dnn.DNN_TARGET_CPU
    device: str = "cpu"               # torch models only

    # UI / speed
    show: bool = True
    window_name: str = "TRACKING"
    stride: int = 1
    max_frames: Optional[int] = None
