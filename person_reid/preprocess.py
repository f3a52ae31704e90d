from __future__ import annotations

from typing import Sequence, Tuple

import cv2
import numpy as np

# ImageNet statistics, indexed by output (RGB) channel.
MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)


def preprocess_crop(crop: np.ndarray) -> np.ndarray:
    """
    Normalise one uint8 crop for the embedding model.

    Channels are reversed (BGR -> RGB) and each value becomes
    (pixel / 255 - mean[c]) / std[c]. No resizing happens here.
    Empty or non 3-channel crops raise ValueError.
    """
    if crop is None or crop.size == 0:
        raise ValueError("cannot preprocess an empty crop")
    if crop.ndim != 3 or crop.shape[2] != 3:
        raise ValueError(f"expected an HxWx3 crop, got shape {crop.shape}")

    x = crop[:, :, ::-1].astype(np.float32) / 255.0
    return (x - MEAN) / STD


def build_batch_blob(images: Sequence[np.ndarray], size: Tuple[int, int]) -> np.ndarray:
    """
    Resize preprocessed HxWx3 float images to size=(height, width) and stack
    them into an (N, 3, height, width) float32 blob.
    """
    height, width = size
    return cv2.dnn.blobFromImages(
        list(images),
        scalefactor=1.0,
        size=(int(width), int(height)),
        mean=(0.0, 0.0, 0.0),
        swapRB=False,
        crop=False,
        ddepth=cv2.CV_32F,
    )
