from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import EmbeddingShapeError
from .preprocess import build_batch_blob, preprocess_crop

logger = logging.getLogger(__name__)


def l2_normalize(x: np.ndarray) -> np.ndarray:
    """
    Row-wise L2 normalisation of an (N, D) array.
    Rows with zero (or non-finite) norm come back as all-zero rows.
    """
    x = np.asarray(x, dtype=np.float32)
    norms = np.linalg.norm(x, axis=-1, keepdims=True)
    ok = np.isfinite(norms) & (norms > 0.0)
    out = np.zeros_like(x)
    np.divide(x, norms, out=out, where=ok)
    return out


class EmbeddingExtractor:
    """
    Appearance embeddings for person crops.

    Crops are fed to the model in chunks of `batch_size`, resized to
    `input_size` = (height, width). One unit-length vector comes back per
    crop, in input order. Common ReID input: (H, W) = (256, 128).
    """

    def __init__(self, model, input_size: Tuple[int, int] = (256, 128), batch_size: int = 1):
        if int(batch_size) < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        h, w = input_size
        if int(h) <= 0 or int(w) <= 0:
            raise ValueError(f"input_size must be positive, got {input_size}")
        self.model = model
        self.input_size = (int(h), int(w))
        self.batch_size = int(batch_size)
        self.dim: Optional[int] = None

    def _run_chunk(self, chunk: Sequence[np.ndarray]) -> np.ndarray:
        blob = build_batch_blob([preprocess_crop(c) for c in chunk], self.input_size)
        out = np.asarray(self.model.run(blob), dtype=np.float32)
        if out.ndim == 0 or out.shape[0] != len(chunk):
            raise EmbeddingShapeError(
                f"embedding model returned shape {out.shape} for a batch of {len(chunk)}"
            )
        feats = out.reshape(len(chunk), -1)

        if self.dim is None:
            self.dim = feats.shape[1]
        elif feats.shape[1] != self.dim:
            raise EmbeddingShapeError(
                f"embedding dimension changed from {self.dim} to {feats.shape[1]}"
            )
        return feats

    def extract(self, crops: Sequence[np.ndarray]) -> np.ndarray:
        if len(crops) == 0:
            return np.zeros((0, 0), dtype=np.float32)

        rows: List[np.ndarray] = []
        for st in range(0, len(crops), self.batch_size):
            rows.append(self._run_chunk(crops[st : st + self.batch_size]))

        feats = l2_normalize(np.concatenate(rows, axis=0))
        degenerate = int(np.count_nonzero(~feats.any(axis=1)))
        if degenerate:
            logger.warning("%d of %d embeddings were degenerate (zero norm)", degenerate, len(crops))
        return feats

    def extract_one(self, crop: np.ndarray) -> np.ndarray:
        return self.extract([crop])[0]
