"""
Online centroid training from a stream of embeddings.

Each class keeps a running sum of L2-normalized embeddings plus a count
(normalize-then-average: every sample carries equal directional weight
regardless of its magnitude). finalize() turns the sums into a centroid
head in a single pass; there is no iterative optimisation.

The embedding dimension D is fixed by the first sample. A sample of a
different length is a dimension-change event (e.g. the feature extractor was
swapped): with the default "reset" policy every accumulator is emptied and
the new D adopted, labels kept; with "reject" it raises
DimensionMismatchError.
"""
from __future__ import annotations

import logging
from typing import Any, Sequence

import numpy as np

from teachable.errors import DimensionMismatchError, InvalidClassError, TrainError
from teachable.head import Head
from teachable.logs import log_structured
from teachable.vectors import as_vector, l2_normalize_in_place, l2_normalized

logger = logging.getLogger(__name__)

POLICY_RESET = "reset"
POLICY_REJECT = "reject"
DIMENSION_POLICIES = (POLICY_RESET, POLICY_REJECT)


class ClassAccumulator:
    """Running sum and sample count for one class. D is adopted from the first sample if unknown."""

    def __init__(self, dim: int = -1):
        self.dim = dim
        self.sum = np.zeros(max(dim, 0), dtype=np.float64)
        self.count = 0

    def add(self, sample: np.ndarray) -> None:
        """Accumulate one (already normalized) sample."""
        if self.dim < 0:
            self.dim = len(sample)
            self.sum = np.zeros(self.dim, dtype=np.float64)
        if len(sample) != self.dim:
            raise DimensionMismatchError(expected=self.dim, actual=len(sample))
        self.sum += np.asarray(sample, dtype=np.float64)
        self.count += 1

    def mean(self) -> np.ndarray | None:
        """Element-wise mean, or None when no samples were added."""
        if self.count == 0:
            return None
        return (self.sum / self.count).astype(np.float32)

    def clear(self, dim: int | None = None) -> None:
        if dim is not None:
            self.dim = dim
        self.sum = np.zeros(max(self.dim, 0), dtype=np.float64)
        self.count = 0


class CentroidTrainer:
    """One accumulator per class label; class index is the position in labels."""

    def __init__(self, labels: Sequence[str] = (), dimension_policy: str = POLICY_RESET):
        if dimension_policy not in DIMENSION_POLICIES:
            raise ValueError(f"dimension_policy must be one of {DIMENSION_POLICIES}, got {dimension_policy!r}")
        self.dimension_policy = dimension_policy
        self._labels: list[str] = []
        self._accs: list[ClassAccumulator] = []
        self._dim = -1
        self.current_class = 0
        for label in labels:
            self._append(label)

    # ---- read API ----
    @property
    def labels(self) -> list[str]:
        return list(self._labels)

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def num_classes(self) -> int:
        return len(self._labels)

    @property
    def counts(self) -> list[int]:
        return [a.count for a in self._accs]

    def count(self, class_index: int) -> int:
        self._check_index(class_index)
        return self._accs[class_index].count

    def mean(self, class_index: int) -> np.ndarray | None:
        self._check_index(class_index)
        return self._accs[class_index].mean()

    # ---- classes ----
    def _append(self, label: str) -> int:
        self._labels.append(str(label))
        self._accs.append(ClassAccumulator(self._dim))
        return len(self._labels) - 1

    def add_class(self, label: str) -> int:
        """Append a class (duplicate labels allowed) and select it. Returns its index."""
        idx = self._append(label)
        self.current_class = idx
        logger.info("Added class '%s' (total=%d)", label, len(self._labels))
        log_structured("class_added", label=str(label), index=idx)
        return idx

    def select_class(self, class_index: int) -> None:
        self._check_index(class_index)
        self.current_class = class_index

    def clear_class(self, class_index: int) -> None:
        self._check_index(class_index)
        self._accs[class_index].clear()
        logger.info("Cleared samples of class '%s'", self._labels[class_index])

    def remove_class(self, class_index: int) -> str:
        self._check_index(class_index)
        removed = self._labels.pop(class_index)
        self._accs.pop(class_index)
        if class_index < self.current_class:
            self.current_class -= 1
        self.current_class = min(max(self.current_class, 0), max(len(self._labels) - 1, 0))
        logger.info("Removed class '%s'", removed)
        log_structured("class_removed", label=removed, index=class_index)
        return removed

    def reset(self, labels: Sequence[str] | None = None) -> None:
        """Empty every accumulator and forget D; optionally replace the label set."""
        new_labels = list(self._labels) if labels is None else [str(x) for x in labels]
        self._dim = -1
        self._labels = []
        self._accs = []
        for label in new_labels:
            self._append(label)
        self.current_class = 0
        logger.info("Trainer reset with %d classes", len(self._labels))

    def notify_embedder_changed(self) -> None:
        """Feature extractor switched: drop all samples, keep labels, re-learn D on next sample."""
        self.reset()
        log_structured("embedder_changed", classes=len(self._labels))

    # ---- samples ----
    def add_sample(self, class_index: int, embedding: Any) -> None:
        """Normalize a copy of embedding and accumulate it into class_index."""
        self._check_index(class_index)
        z = as_vector(embedding)
        if z.size == 0:
            raise TrainError("cannot add an empty embedding", {"class_index": class_index})
        if self._dim < 0:
            self._adopt_dim(len(z))
        elif len(z) != self._dim:
            if self.dimension_policy == POLICY_REJECT:
                raise DimensionMismatchError(expected=self._dim, actual=len(z))
            logger.warning("Embedding dimension changed %d -> %d; resetting all classes", self._dim, len(z))
            log_structured("dimension_changed", old_dim=self._dim, new_dim=len(z))
            self._adopt_dim(len(z))
        acc = self._accs[class_index]
        acc.add(l2_normalized(z))
        logger.debug("+1 -> '%s' (count=%d)", self._labels[class_index], acc.count)
        log_structured("sample_added", label=self._labels[class_index], index=class_index, count=acc.count)

    def _adopt_dim(self, dim: int) -> None:
        self._dim = dim
        for acc in self._accs:
            acc.clear(dim)

    # ---- head ----
    def finalize(self, labels: Sequence[str] | None = None) -> Head:
        """
        Build a centroid head: per class the normalized mean of its samples,
        or an all-zero vector for a class without samples (similarity 0, never
        beats a class with positive similarity). No labels -> unusable head.
        """
        if labels is None:
            labels = self._labels
        elif len(labels) != len(self._labels):
            raise TrainError(
                f"{len(labels)} labels given for {len(self._labels)} classes",
                {"labels": len(labels), "classes": len(self._labels)},
            )
        dim = max(self._dim, 0)
        centroids = []
        for acc in self._accs:
            m = acc.mean()
            centroids.append(np.zeros(dim, dtype=np.float32) if m is None else l2_normalize_in_place(m))
        head = Head.centroid(labels, centroids)
        log_structured("head_trained", classes=head.num_classes, dim=head.dim, counts=self.counts)
        return head

    def _check_index(self, class_index: int) -> None:
        if not 0 <= class_index < len(self._labels):
            raise InvalidClassError(class_index, len(self._labels))
