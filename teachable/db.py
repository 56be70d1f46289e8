"""
Database: raw teaching samples per session.

Schema:
- samples: one row per embedding added while teaching (session, class index,
  label, float32 blob). Rows are raw (un-normalized) so a head can be rebuilt
  later with the same normalize-then-accumulate rule.

Local SQLite only.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

import numpy as np

from teachable.vectors import blob_to_embedding, embedding_to_blob

logger = logging.getLogger(__name__)

# Default: beside the package
_DEFAULT_DB = Path(__file__).resolve().parent.parent / "teachable.db"


def get_db_path(config: dict[str, Any] | None = None) -> Path:
    """Resolve DB path from config or default."""
    if config and config.get("database", {}).get("path"):
        return Path(config["database"]["path"])
    return _DEFAULT_DB


@contextmanager
def get_connection(db_path: Path | str | None = None, config: dict | None = None) -> Iterator[sqlite3.Connection]:
    """Context manager for a single connection. Commits on success."""
    path = db_path or get_db_path(config)
    conn = sqlite3.connect(str(path))
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def init_schema(conn: sqlite3.Connection) -> None:
    """Create the samples table and index. Idempotent; safe to call on every startup."""
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS samples (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session TEXT NOT NULL,
            class_index INTEGER NOT NULL,
            label TEXT NOT NULL,
            embedding_blob BLOB NOT NULL,
            embedding_dim INTEGER NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """)
    c.execute("CREATE INDEX IF NOT EXISTS idx_samples_session ON samples(session)")
    conn.commit()


def insert_sample(
    conn: sqlite3.Connection,
    session: str,
    class_index: int,
    label: str,
    embedding: np.ndarray,
) -> int:
    """Store one raw embedding; return row id."""
    vec = np.asarray(embedding, dtype=np.float32).ravel()
    c = conn.cursor()
    c.execute(
        "INSERT INTO samples (session, class_index, label, embedding_blob, embedding_dim) VALUES (?, ?, ?, ?, ?)",
        (session, int(class_index), label, embedding_to_blob(vec), int(vec.size)),
    )
    conn.commit()
    return c.lastrowid


def get_samples(conn: sqlite3.Connection, session: str) -> list[tuple[int, str, np.ndarray]]:
    """Return (class_index, label, embedding) for a session in insertion order."""
    c = conn.cursor()
    c.execute(
        "SELECT class_index, label, embedding_blob FROM samples WHERE session = ? ORDER BY id",
        (session,),
    )
    return [(int(r[0]), r[1], blob_to_embedding(r[2])) for r in c.fetchall()]


def session_labels(conn: sqlite3.Connection, session: str) -> list[str]:
    """Distinct labels of a session, ordered by their lowest class index. No gaps."""
    c = conn.cursor()
    c.execute(
        "SELECT label FROM samples WHERE session = ? GROUP BY label ORDER BY MIN(class_index), MIN(id)",
        (session,),
    )
    return [r[0] for r in c.fetchall()]


def class_index_for(conn: sqlite3.Connection, session: str, label: str) -> int:
    """Class index already recorded for label in a session, else the next unused index."""
    c = conn.cursor()
    c.execute("SELECT MIN(class_index) FROM samples WHERE session = ? AND label = ?", (session, label))
    row = c.fetchone()
    if row[0] is not None:
        return int(row[0])
    c.execute("SELECT MAX(class_index) FROM samples WHERE session = ?", (session,))
    row = c.fetchone()
    return 0 if row[0] is None else int(row[0]) + 1


def delete_class_samples(conn: sqlite3.Connection, session: str, class_index: int, shift: bool = False) -> int:
    """
    Delete the samples of one class; return number of rows removed.
    shift=True is for a removed class: later classes move down one index.
    """
    c = conn.cursor()
    c.execute("DELETE FROM samples WHERE session = ? AND class_index = ?", (session, int(class_index)))
    removed = c.rowcount
    if shift:
        c.execute(
            "UPDATE samples SET class_index = class_index - 1 WHERE session = ? AND class_index > ?",
            (session, int(class_index)),
        )
    conn.commit()
    return removed


def list_sessions(conn: sqlite3.Connection) -> list[tuple[str, int]]:
    """Return (session, sample_count) for every session."""
    c = conn.cursor()
    c.execute("SELECT session, COUNT(*) FROM samples GROUP BY session ORDER BY session")
    return [(r[0], int(r[1])) for r in c.fetchall()]


def delete_session(conn: sqlite3.Connection, session: str) -> int:
    """Delete all samples of a session; return number of rows removed."""
    c = conn.cursor()
    c.execute("DELETE FROM samples WHERE session = ?", (session,))
    conn.commit()
    return c.rowcount


def replay_samples(trainer: Any, rows: Iterable[tuple[int, str, np.ndarray]]) -> int:
    """
    Feed stored samples into a CentroidTrainer; return how many were added.

    Rows are matched by label: the stored class index is used when the
    trainer has that label there, otherwise the label's first index. Rows
    whose label the trainer does not know are skipped.
    """
    labels = trainer.labels
    first: dict[str, int] = {}
    for i, label in enumerate(labels):
        first.setdefault(label, i)
    n = skipped = 0
    for class_index, label, vec in rows:
        if 0 <= class_index < len(labels) and labels[class_index] == label:
            idx = class_index
        elif label in first:
            idx = first[label]
        else:
            skipped += 1
            continue
        trainer.add_sample(idx, vec)
        n += 1
    if skipped:
        logger.warning("Replay skipped %d samples with unknown labels", skipped)
    return n
