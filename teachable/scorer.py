"""
Score one embedding against a head: (best_class_index, score).

Centroid heads: cosine similarity against each unit centroid, score in [-1, 1].
Linear heads: logits z @ W, numerically stable softmax, score = probability.

Exact ties go to the lowest class index (strict > when tracking the best).
Pure functions; the caller's embedding is never modified.
"""
from __future__ import annotations

from typing import Any

import numpy as np

from teachable.errors import DimensionMismatchError, EmptyEmbeddingError, HeadNotReadyError
from teachable.head import Head, HeadKind
from teachable.vectors import as_vector, dot, l2_normalized


def score(head: Head | None, embedding: Any, strict: bool = False) -> tuple[int, float]:
    """
    Raises HeadNotReadyError for a missing/unusable head, EmptyEmbeddingError
    for an empty or non-finite embedding and, with strict=True, DimensionMismatchError when
    the embedding length differs from the head's D.
    """
    if head is None or not head.is_usable():
        raise HeadNotReadyError("head is not ready for scoring")
    if embedding is None:
        raise EmptyEmbeddingError()
    z = as_vector(embedding)
    if z.size == 0:
        raise EmptyEmbeddingError()
    if not np.all(np.isfinite(z)):
        raise EmptyEmbeddingError("embedding contains NaN or inf")
    if head.kind is HeadKind.CENTROID:
        return score_centroid(head, z, strict=strict)
    return score_linear(head, z, strict=strict)


def score_centroid(head: Head, z: np.ndarray, strict: bool = False) -> tuple[int, float]:
    q = l2_normalized(z)
    best, best_s = -1, float("-inf")
    for c, centroid in enumerate(head.centroids):
        s = dot(q, centroid, strict=strict)
        if s > best_s:
            best, best_s = c, s
    return best, float(best_s)


def softmax(logits: np.ndarray) -> np.ndarray:
    """Softmax in float64 with the max logit subtracted first."""
    x = np.asarray(logits, dtype=np.float64)
    e = np.exp(x - np.max(x))
    return e / e.sum()


def linear_logits(head: Head, z: np.ndarray, strict: bool = False) -> np.ndarray:
    """Logit per class, sum over d < min(len(z), D) of W[d, c] * z[d]."""
    w = head.weights
    if strict and len(z) != w.shape[0]:
        raise DimensionMismatchError(expected=int(w.shape[0]), actual=len(z))
    d = min(len(z), w.shape[0])
    return np.asarray(z[:d], dtype=np.float64) @ np.asarray(w[:d], dtype=np.float64)


def score_linear(head: Head, z: np.ndarray, strict: bool = False) -> tuple[int, float]:
    probs = softmax(linear_logits(head, z, strict=strict))
    # np.argmax returns the first maximum, matching the tie rule
    best = int(np.argmax(probs))
    return best, float(probs[best])
