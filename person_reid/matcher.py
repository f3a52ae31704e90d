from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    # both inputs are expected to be unit length already
    return float(np.dot(np.asarray(a, dtype=np.float32), np.asarray(b, dtype=np.float32)))


@dataclass(frozen=True)
class MatchResult:
    index: Optional[int]
    similarity: float

    @property
    def matched(self) -> bool:
        return self.index is not None


NO_MATCH = MatchResult(None, float("-inf"))


class IdentityMatcher:
    """
    Picks the one candidate that looks most like the reference.

    Matching logic:
      1) No reference, no candidates, or a zero reference -> NO_MATCH
      2) Similarity = dot product of unit vectors, one per candidate
      3) Zero (degenerate) candidate embeddings are never selected
      4) Highest similarity wins; ties go to the earliest candidate
      5) If min_similarity is set and the best score is below it -> NO_MATCH
    """

    def __init__(self, min_similarity: Optional[float] = None):
        self.min_similarity = None if min_similarity is None else float(min_similarity)

    def similarities(self, reference: np.ndarray, candidates: np.ndarray) -> np.ndarray:
        ref = np.asarray(reference, dtype=np.float32).reshape(-1)
        cands = np.asarray(candidates, dtype=np.float32)
        if cands.ndim != 2 or cands.shape[1] != ref.shape[0]:
            raise ValueError(
                f"candidate embeddings {cands.shape} do not match reference dimension {ref.shape[0]}"
            )
        return cands @ ref

    def match(self, reference: Optional[np.ndarray], candidates: Optional[np.ndarray]) -> MatchResult:
        if reference is None or candidates is None or len(candidates) == 0:
            return NO_MATCH
        if not np.any(reference):
            return NO_MATCH

        sims = self.similarities(reference, candidates)
        valid = np.asarray(candidates).any(axis=1)
        if not valid.any():
            return NO_MATCH

        # np.argmax returns the first maximum, which is the tie rule we want
        masked = np.where(valid, sims, -np.inf)
        best = int(np.argmax(masked))
        score = float(sims[best])

        if self.min_similarity is not None and score < self.min_similarity:
            return NO_MATCH
        return MatchResult(best, score)
