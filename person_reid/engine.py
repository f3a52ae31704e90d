from __future__ import annotations

"""Model loading and raw forward passes.

Detection and embedding models are treated as opaque "blob in, array out"
services. Two backends are supported:

  - OpenCV DNN (`cv2.dnn.readNet`) for ONNX and the other formats it reads.
    This is the default and matches how the YOLOv8 / Youtu ReID ONNX exports
    are usually run.
  - PyTorch for Ultralytics `.pt` detection weights (the raw detect head is
    used, not `YOLO.predict`, so decoding and NMS stay ours), TorchScript
    embedding models, and the torchvision ResNet-50 backbone as a
    no-download-needed body embedding fallback.
"""

import logging
from pathlib import Path
from typing import Union

import cv2
import numpy as np
import torch

from .errors import ModelLoadError

logger = logging.getLogger(__name__)

RESNET50_FALLBACK = "resnet50"
_TORCHSCRIPT_SUFFIXES = {".pt", ".pth", ".torchscript"}


class DnnModel:
    def __init__(self, path: Union[str, Path], backend: int = 0, target: int = 0):
        path = Path(path)
        if not path.exists():
            raise ModelLoadError(f"Model file not found: {path}")
        try:
            self.net = cv2.dnn.readNet(str(path))
        except cv2.error as e:
            raise ModelLoadError(f"Could not load model {path}: {e}") from e
        if self.net.empty():
            raise ModelLoadError(f"Could not load model {path}")
        self.net.setPreferableBackend(int(backend))
        self.net.setPreferableTarget(int(target))
        self.name = path.name

    def run(self, blob: np.ndarray) -> np.ndarray:
        self.net.setInput(blob)
        out = self.net.forward()
        return np.asarray(out, dtype=np.float32)


class TorchModel:
    def __init__(self, module: torch.nn.Module, device: str = "cpu", name: str = "torch"):
        self.device = torch.device(device)
        module.eval()
        module.to(self.device)
        self.module = module
        self.name = name

    def run(self, blob: np.ndarray) -> np.ndarray:
        x = torch.from_numpy(np.ascontiguousarray(blob, dtype=np.float32)).to(self.device)
        with torch.no_grad():
            out = self.module(x)
        # Ultralytics detect heads return (predictions, raw feature maps)
        if isinstance(out, (tuple, list)):
            out = out[0]
        return out.detach().cpu().numpy().astype(np.float32)


def _resnet50_backbone() -> torch.nn.Module:
    from torchvision.models import resnet50, ResNet50_Weights

    model = resnet50(weights=ResNet50_Weights.DEFAULT)
    # Remove classifier head -> 2048-d pooled features.
    model.fc = torch.nn.Identity()
    return model


def load_detection_model(path: Union[str, Path], backend: int = 0, target: int = 0, device: str = "cpu"):
    path = Path(path)
    if path.suffix == ".pt":
        if not path.exists():
            raise ModelLoadError(f"Model file not found: {path}")
        try:
            from ultralytics import YOLO

            module = YOLO(str(path)).model.float()
        except Exception as e:
            raise ModelLoadError(f"Could not load Ultralytics weights {path}: {e}") from e
        logger.info("Loaded detection model %s (torch, %s)", path.name, device)
        return TorchModel(module, device=device, name=path.name)

    model = DnnModel(path, backend=backend, target=target)
    logger.info("Loaded detection model %s (opencv dnn)", path.name)
    return model


def load_embedding_model(path: Union[str, Path], backend: int = 0, target: int = 0, device: str = "cpu"):
    if str(path) == RESNET50_FALLBACK:
        try:
            module = _resnet50_backbone()
        except Exception as e:
            raise ModelLoadError(f"Could not load torchvision ResNet-50: {e}") from e
        logger.info("Loaded embedding model resnet50 (torchvision, %s)", device)
        return TorchModel(module, device=device, name=RESNET50_FALLBACK)

    path = Path(path)
    if path.suffix in _TORCHSCRIPT_SUFFIXES:
        if not path.exists():
            raise ModelLoadError(f"Model file not found: {path}")
        try:
            module = torch.jit.load(str(path), map_location=device)
        except Exception as e:
            raise ModelLoadError(f"Could not load TorchScript model {path}: {e}") from e
        logger.info("Loaded embedding model %s (torchscript, %s)", path.name, device)
        return TorchModel(module, device=device, name=path.name)

    model = DnnModel(path, backend=backend, target=target)
    logger.info("Loaded embedding model %s (opencv dnn)", path.name)
    return model
