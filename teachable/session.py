"""
Teaching session: trainer + live loop + head store (+ optional sample DB).

This is the surface a UI drives: define classes, add samples, train and
apply a head, switch between saved heads, and tick live predictions.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Any, Callable, Sequence

from teachable.config_loader import heads_dir, load_config
from teachable.db import (
    delete_class_samples,
    delete_session,
    get_samples,
    insert_sample,
    replay_samples,
    session_labels,
)
from teachable.embedders import Embedder
from teachable.errors import EmptyEmbeddingError
from teachable.head import Head
from teachable.live import LiveInferenceLoop
from teachable.store import DetectionSetup, HeadStore, export_setup, parse_setup, sanitize_name
from teachable.trainer import CentroidTrainer

logger = logging.getLogger(__name__)

HeadTrainedCallback = Callable[[str, Head], None]


class TeachingSession:
    def __init__(
        self,
        config: dict[str, Any] | None = None,
        trainer: CentroidTrainer | None = None,
        loop: LiveInferenceLoop | None = None,
        store: HeadStore | None = None,
        conn: sqlite3.Connection | None = None,
    ):
        self.config = config if config is not None else load_config()
        tcfg = self.config.get("trainer", {})
        self.trainer = trainer or CentroidTrainer(
            tcfg.get("classes") or [],
            dimension_policy=tcfg.get("dimension_policy", "reset"),
        )
        self.loop = loop or LiveInferenceLoop.from_config(self.config)
        self.store = store or HeadStore(heads_dir(self.config))
        self.conn = conn
        self.name = sanitize_name(tcfg.get("session") or "session1")
        self._on_head_trained: list[HeadTrainedCallback] = []

    # ---- exposed interface ----
    def add_class(self, label: str) -> int:
        return self.trainer.add_class(label)

    def add_sample(self, class_index: int, embedding: Any) -> None:
        self.trainer.add_sample(class_index, embedding)
        if self.conn is not None:
            insert_sample(self.conn, self.name, class_index, self.trainer.labels[class_index], embedding)

    def add_sample_from_frame(self, frame: Any, embedder: Embedder) -> None:
        """Embed a frame and add it to the currently selected class."""
        z = embedder.embed(frame)
        if z is None:
            raise EmptyEmbeddingError("embedder returned no embedding")
        self.add_sample(self.trainer.current_class, z)

    def clear_class(self, class_index: int) -> None:
        self.trainer.clear_class(class_index)
        if self.conn is not None:
            delete_class_samples(self.conn, self.name, class_index)

    def remove_class(self, class_index: int) -> str:
        removed = self.trainer.remove_class(class_index)
        if self.conn is not None:
            delete_class_samples(self.conn, self.name, class_index, shift=True)
        return removed

    def finalize_head(self) -> Head:
        return self.trainer.finalize()

    def install_head(self, head: Head, name: str = "") -> None:
        self.loop.install_head(head, name=name)

    def tick(self, embedding: Any) -> tuple[str, float] | None:
        return self.loop.tick(embedding)

    def start(self) -> None:
        self.loop.start()

    def pause(self) -> None:
        self.loop.pause()

    # ---- listeners ----
    def on_head_trained(self, callback: HeadTrainedCallback) -> None:
        self._on_head_trained.append(callback)

    # ---- detections (named heads) ----
    def train_and_apply(self, name: str | None = None) -> Head:
        """Finalize, save under name (default: session name), install on the loop."""
        name = sanitize_name(name or self.name)
        head = self.finalize_head()
        self.store.save(name, head)
        self.install_head(head, name=name)
        for cb in list(self._on_head_trained):
            cb(name, head)
        return head

    def load_and_apply(self, name: str) -> Head:
        head = self.store.load(name)
        self.install_head(head, name=sanitize_name(name))
        logger.info("Switched to detection: %s", name)
        return head

    def create_detection(self, name: str, classes: Sequence[str] = ()) -> None:
        """Start a fresh detection: new session name, given classes, no samples (stored ones are dropped)."""
        self.name = sanitize_name(name)
        self.trainer.reset(list(classes))
        if self.conn is not None:
            delete_session(self.conn, self.name)
        self.loop.clear_head()
        logger.info("New detection '%s' initialized", self.name)

    def load_for_editing(self, name: str) -> Head:
        """Reset the trainer to a saved head's classes (no samples) and apply the head."""
        head = self.store.load(name)
        self.name = sanitize_name(name)
        self.trainer.reset(list(head.class_labels))
        self.install_head(head, name=self.name)
        logger.info("Loaded '%s' for retrain", self.name)
        return head

    def apply_setup(self, text: str) -> DetectionSetup:
        setup = parse_setup(text)
        self.create_detection(setup.name, setup.classes)
        logger.info("Injected detection setup -> name='%s', classes=%s", setup.name, setup.classes)
        return setup

    def export_setup(self, tag: str | None = None, version: str | None = None, notes: str | None = None) -> str:
        return export_setup(self.name, self.trainer.labels, tag=tag, version=version, notes=notes)

    def rebuild_from_records(self) -> int:
        """Re-accumulate this session's stored samples into a freshly reset trainer."""
        if self.conn is None:
            return 0
        self.trainer.reset(self.trainer.labels or session_labels(self.conn, self.name))
        return replay_samples(self.trainer, get_samples(self.conn, self.name))

    def switch_embedder(self) -> None:
        self.trainer.notify_embedder_changed()
        # samples from the old model must not be replayed into the new one
        if self.conn is not None:
            delete_session(self.conn, self.name)
        logger.info("Embedder switched; re-collect samples for %d classes", self.trainer.num_classes)
