"""
Error types for teaching and live classification.

Construction-time problems (bad class index, unusable head) are raised to the
caller. The live loop turns per-tick failures into skip reasons instead.
"""
from __future__ import annotations

from typing import Any


class TeachableError(Exception):
    """Base exception; carries a message and a details dict for structured logs."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TrainError(TeachableError):
    """Raised while teaching: bad class index or embedding dimension."""


class HeadError(TeachableError):
    """Raised when a head cannot be built, loaded or installed."""


class ScoreError(TeachableError):
    """Raised by the scorer."""


class InvalidClassError(TrainError):
    """Class index out of range."""

    def __init__(self, index: int, num_classes: int):
        super().__init__(
            f"class index {index} out of range for {num_classes} classes",
            {"index": index, "num_classes": num_classes},
        )
        self.index = index
        self.num_classes = num_classes


class DimensionMismatchError(TrainError, ScoreError):
    """Embedding length differs from the established dimension."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"embedding dimension {actual} does not match {expected}",
            {"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class HeadNotReadyError(HeadError, ScoreError):
    """Head fails the usability check (no classes or payload shape mismatch)."""


class EmptyEmbeddingError(ScoreError):
    """Embedding is missing, has zero length or holds non-finite values."""

    def __init__(self, message: str = "embedding is empty"):
        super().__init__(message)
