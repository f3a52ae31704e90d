from __future__ import annotations


class ReIDError(RuntimeError):
    """Base class for conditions that abort a re-identification run."""


class ModelLoadError(ReIDError):
    pass


class VideoSourceError(ReIDError):
    pass


class QueryImageError(ReIDError):
    pass


class EmptyReferenceError(ReIDError):
    """The reference identity could not be built from the supplied input."""


class SelectionCancelledError(ReIDError):
    pass


class EmbeddingShapeError(ReIDError):
    """Embedding model output does not line up with the crops that were fed in."""
