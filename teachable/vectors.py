"""
Vector primitives shared by the trainer, the scorer and storage.

Embeddings are float32 vectors produced by an external feature extractor.
Sums are taken in double precision and cast back to float32, so results do
not depend on accumulation order beyond float64 rounding.
"""
from __future__ import annotations

from typing import Any

import numpy as np

from teachable.errors import DimensionMismatchError

# Squared-norm floor below which a vector is treated as all-zero
NORM_EPSILON = 1e-12


def as_vector(v: Any) -> np.ndarray:
    """Flatten any array-like into a 1-D float32 vector (copy only if needed)."""
    return np.asarray(v, dtype=np.float32).ravel()


def l2_normalize_in_place(v: np.ndarray) -> np.ndarray:
    """
    Scale v to unit length in place and return it.
    A degenerate (near-zero) vector is left unchanged: never divides by zero.
    """
    if v.size == 0:
        return v
    s = float(np.dot(v.astype(np.float64), v.astype(np.float64)))
    if s > NORM_EPSILON:
        v *= np.float32(1.0 / np.sqrt(s))
    return v


def l2_normalized(v: Any) -> np.ndarray:
    """Unit-length copy of v; the caller's buffer is never touched."""
    out = np.array(v, dtype=np.float32).ravel()
    return l2_normalize_in_place(out)


def dot(a: np.ndarray, b: np.ndarray, strict: bool = False) -> float:
    """
    Dot product accumulated in float64.

    Length mismatch: by default the product runs over the shorter of the two
    vectors. With strict=True a mismatch raises DimensionMismatchError.
    """
    if len(a) != len(b):
        if strict:
            raise DimensionMismatchError(expected=len(b), actual=len(a))
        d = min(len(a), len(b))
        a, b = a[:d], b[:d]
    return float(np.dot(np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)))


def embedding_to_blob(vec: np.ndarray) -> bytes:
    """Serialize embedding to bytes for DB storage."""
    return np.asarray(vec, dtype=np.float32).tobytes()


def blob_to_embedding(blob: bytes) -> np.ndarray:
    """Deserialize embedding from DB."""
    return np.frombuffer(blob, dtype=np.float32).copy()
