"""
Head: the trained decision artifact used for live classification.

Two kinds:
- centroid: one unit-length vector per class; score = cosine similarity.
- linear:   weight matrix W of shape [D, C]; score = softmax probability.

On-disk format (JSON):
  {"type": "centroid" | "linear",
   "classes": [...],
   "centroids": [[...], ...]   # centroid only, one row per class
   "W": [[...], ...]}          # linear only, shape [D][C]

A head is usable iff it has at least one class and its payload matches the
class count. Unusable heads are never installed; loading one raises
HeadNotReadyError.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

import numpy as np

from teachable.errors import HeadNotReadyError
from teachable.vectors import l2_normalized


class HeadKind(str, Enum):
    CENTROID = "centroid"
    LINEAR = "linear"


def _frozen(a: np.ndarray) -> np.ndarray:
    a.setflags(write=False)
    return a


@dataclass(frozen=True, eq=False)
class Head:
    """Immutable head. Replace it wholesale; never edit it field by field."""
    kind: HeadKind
    class_labels: tuple[str, ...]
    centroids: tuple[np.ndarray, ...] = field(default=())
    weights: np.ndarray | None = None

    @classmethod
    def centroid(cls, labels: Sequence[str], centroids: Sequence[Any]) -> "Head":
        rows = tuple(_frozen(np.array(c, dtype=np.float32).ravel()) for c in centroids)
        return cls(HeadKind.CENTROID, tuple(str(x) for x in labels), centroids=rows)

    @classmethod
    def linear(cls, labels: Sequence[str], weights: Any) -> "Head":
        w = np.array(weights, dtype=np.float32)
        if w.ndim != 2:
            w = np.zeros((0, 0), dtype=np.float32)
        return cls(HeadKind.LINEAR, tuple(str(x) for x in labels), weights=_frozen(w))

    @property
    def num_classes(self) -> int:
        return len(self.class_labels)

    @property
    def dim(self) -> int:
        """Embedding dimension D the head expects, or -1 if unknown."""
        if self.kind is HeadKind.CENTROID:
            return len(self.centroids[0]) if self.centroids else -1
        if self.weights is not None and self.weights.ndim == 2:
            return int(self.weights.shape[0])
        return -1

    def is_usable(self) -> bool:
        if not self.class_labels:
            return False
        if self.kind is HeadKind.CENTROID:
            return len(self.centroids) == len(self.class_labels) and all(c.size > 0 for c in self.centroids)
        if self.kind is HeadKind.LINEAR:
            w = self.weights
            return w is not None and w.ndim == 2 and w.shape[0] > 0 and w.shape[1] == len(self.class_labels)
        return False

    def describe(self) -> str:
        return f"type={self.kind.value}, dim={self.dim}, classes={self.num_classes}"

    def normalized(self) -> "Head":
        """Copy with every non-zero centroid scaled to unit length. Linear heads are returned as is."""
        if self.kind is not HeadKind.CENTROID:
            return self
        return Head.centroid(self.class_labels, [l2_normalized(c) for c in self.centroids])

    # ---- serialization ----
    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.kind.value, "classes": list(self.class_labels)}
        if self.kind is HeadKind.CENTROID:
            out["centroids"] = [c.tolist() for c in self.centroids]
        else:
            out["W"] = self.weights.tolist() if self.weights is not None else []
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any], require_usable: bool = True) -> "Head":
        if not isinstance(data, dict):
            raise HeadNotReadyError("head JSON must be an object")
        kind = str(data.get("type") or HeadKind.CENTROID.value).lower()
        labels = data.get("classes") or []
        if not isinstance(labels, list):
            raise HeadNotReadyError("head 'classes' must be a list")
        try:
            if kind == HeadKind.CENTROID.value:
                rows = data.get("centroids") or []
                if not isinstance(rows, list) or not all(isinstance(r, list) for r in rows):
                    raise HeadNotReadyError("head 'centroids' must be a list of vectors")
                head = cls.centroid(labels, rows)
            elif kind == HeadKind.LINEAR.value:
                head = cls.linear(labels, data.get("W") or [])
            else:
                raise HeadNotReadyError(f"unknown head type '{kind}'", {"type": kind})
        except (TypeError, ValueError) as e:
            raise HeadNotReadyError(f"malformed head payload: {e}") from e
        if require_usable and not head.is_usable():
            raise HeadNotReadyError(f"head is not usable ({head.describe()})", {"type": kind})
        return head

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, text: str, require_usable: bool = True) -> "Head":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise HeadNotReadyError(f"invalid head JSON: {e}") from e
        return cls.from_dict(data, require_usable=require_usable)

    def save(self, path: Path | str) -> Path:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(self.to_json(), encoding="utf-8")
        return p

    @classmethod
    def load(cls, path: Path | str) -> "Head":
        p = Path(path)
        if not p.is_file():
            raise FileNotFoundError(f"head file missing: {p}")
        return cls.from_json(p.read_text(encoding="utf-8"))
