"""
Live inference: score embeddings against the active head, smooth, emit labels.

States:
  IDLE    no usable head
  READY   head installed, not classifying yet
  RUNNING producing predictions on every tick
  PAUSED  head kept, ticks ignored

install_head() always lands in READY; start()/pause() toggle RUNNING and
PAUSED. A tick never raises: a bad frame, a failing embedder or a missing
head yields None and sets last_skip_reason. The frame gate, head swaps and
scoring all run under one RLock; the embedder itself runs outside it.
"""
from __future__ import annotations

import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from teachable.embedders import Embedder
from teachable.errors import DimensionMismatchError, EmptyEmbeddingError, HeadNotReadyError
from teachable.head import Head
from teachable.logs import log_structured
from teachable.scorer import score
from teachable.smoother import Smoother

logger = logging.getLogger(__name__)

PredictionCallback = Callable[[str, float], None]


class LoopState(str, Enum):
    IDLE = "idle"
    READY = "ready"
    RUNNING = "running"
    PAUSED = "paused"


class SkipReason(str, Enum):
    NOT_RUNNING = "not_running"
    HEAD_NOT_READY = "head_not_ready"
    EMPTY_EMBEDDING = "empty_embedding"
    DIMENSION_MISMATCH = "dimension_mismatch"
    NO_EMBEDDING = "no_embedding"
    FRAME_GATED = "frame_gated"
    EMBED_FAILED = "embed_failed"


class LiveInferenceLoop:
    def __init__(self, smooth: int = 5, classify_every: int = 2, strict: bool = False, log_every: int = 15):
        self.smoother = Smoother(smooth)
        self.classify_every = max(1, int(classify_every))
        self.strict = strict
        self.log_every = max(1, int(log_every))
        self.state = LoopState.IDLE
        self.head: Head | None = None
        self.head_name = ""
        self.last_label = ""
        self.last_score = 0.0
        self.last_skip_reason: SkipReason | None = None
        self._frame_idx = 0
        self._ticks = 0
        self._listeners: list[PredictionCallback] = []
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "LiveInferenceLoop":
        c = config.get("classifier", {})
        return cls(
            smooth=int(c.get("smooth", 5)),
            classify_every=int(c.get("classify_every", 2)),
            strict=bool(config.get("scorer", {}).get("strict_dimensions", False)),
            log_every=int(c.get("log_every", 15)),
        )

    @property
    def is_ready(self) -> bool:
        return self.head is not None and self.head.is_usable()

    @property
    def is_running(self) -> bool:
        return self.state is LoopState.RUNNING

    # ---- head lifecycle ----
    def install_head(self, head: Head | None, name: str = "") -> None:
        """Validate and activate head; on failure raise HeadNotReadyError and keep the current state."""
        if head is None or not head.is_usable():
            desc = head.describe() if head is not None else "none"
            logger.warning("install_head skipped: head is not usable (%s)", desc)
            log_structured("head_rejected", name=name, head=desc)
            raise HeadNotReadyError(f"refusing to install unusable head ({desc})", {"name": name})
        with self._lock:
            self.head = head.normalized()
            self.head_name = name
            self.smoother.clear()
            self.last_label, self.last_score = "", 0.0
            self.last_skip_reason = None
            self._set_state(LoopState.READY)
        logger.info("Head set: %s", self.head.describe())
        log_structured("head_installed", name=name, kind=head.kind.value, dim=head.dim, classes=head.num_classes)

    def load_head(self, path: Path | str) -> Head:
        p = Path(path)
        head = Head.load(p)
        self.install_head(head, name=p.stem)
        logger.info("Loaded head from: %s", p)
        return self.head

    def clear_head(self) -> None:
        with self._lock:
            self.head = None
            self.head_name = ""
            self.smoother.clear()
            self.last_label, self.last_score = "", 0.0
            self._set_state(LoopState.IDLE)

    def start(self) -> None:
        with self._lock:
            if self.state in (LoopState.READY, LoopState.PAUSED):
                self._set_state(LoopState.RUNNING)

    def pause(self) -> None:
        with self._lock:
            if self.state is LoopState.RUNNING:
                self._set_state(LoopState.PAUSED)

    def _set_state(self, state: LoopState) -> None:
        if state is not self.state:
            logger.debug("Loop state %s -> %s", self.state.value, state.value)
            log_structured("loop_state", old=self.state.value, new=state.value)
        self.state = state

    # ---- listeners ----
    def subscribe(self, callback: PredictionCallback) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unsubscribe(self, callback: PredictionCallback) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # ---- ticks ----
    def _skip(self, reason: SkipReason) -> None:
        self.last_skip_reason = reason
        logger.debug("Tick skipped: %s", reason.value)
        return None

    def tick(self, embedding: Any) -> tuple[str, float] | None:
        """Score one embedding. Returns (label, score) or None when skipped."""
        with self._lock:
            if self.state is not LoopState.RUNNING:
                return self._skip(SkipReason.NOT_RUNNING)
            head = self.head
            try:
                idx, s = score(head, embedding, strict=self.strict)
            except HeadNotReadyError:
                return self._skip(SkipReason.HEAD_NOT_READY)
            except EmptyEmbeddingError:
                return self._skip(SkipReason.EMPTY_EMBEDDING)
            except DimensionMismatchError:
                return self._skip(SkipReason.DIMENSION_MISMATCH)
            idx = self.smoother.push(idx)
            label = head.class_labels[idx] if 0 <= idx < head.num_classes else str(idx)
            self.last_label, self.last_score = label, s
            self.last_skip_reason = None
            self._ticks += 1
            listeners = list(self._listeners)
        if self._ticks % self.log_every == 0:
            logger.info("Prediction: %s (%.2f)", label, s)
        for cb in listeners:
            cb(label, s)
        return label, s

    def tick_frame(self, frame: Any, embedder: Embedder) -> tuple[str, float] | None:
        """Embed and classify every classify_every-th frame while running."""
        with self._lock:
            if self.state is not LoopState.RUNNING or not self.is_ready:
                return self._skip(SkipReason.NOT_RUNNING if self.is_ready else SkipReason.HEAD_NOT_READY)
            self._frame_idx += 1
            if self._frame_idx % self.classify_every != 0:
                return self._skip(SkipReason.FRAME_GATED)
        try:
            z = embedder.embed(frame)
        except Exception as e:
            logger.debug("Embedder failed on frame: %s", e)
            return self._skip(SkipReason.EMBED_FAILED)
        if z is None:
            return self._skip(SkipReason.NO_EMBEDDING)
        return self.tick(z)
