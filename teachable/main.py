#!/usr/bin/env python3
"""
Teachable classifier: command line entry point.

Record embeddings per class, train a centroid head, and replay embeddings
through the live loop. Embeddings are read from .npy files of shape (N, D)
(or a single (D,) vector) produced by any feature extractor.

Usage:
  python -m teachable.main add-samples --session cups --label mug --embeddings mug.npy
  python -m teachable.main train --session cups
  python -m teachable.main classify --head cups --embeddings stream.npy
  python -m teachable.main list
  TEACHABLE_CONFIG=/path/to/config.yaml python -m teachable.main list
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

import numpy as np

from teachable.config_loader import heads_dir, load_config
from teachable.errors import TeachableError
from teachable.logs import configure_logging
from teachable.store import HeadStore

logger = logging.getLogger(__name__)


def _load_embeddings(path: str) -> np.ndarray:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"embeddings file not found: {p}")
    arr = np.load(p, allow_pickle=False).astype(np.float32)
    if arr.ndim == 1:
        arr = arr.reshape(1, -1)
    if arr.ndim != 2:
        raise ValueError(f"embeddings must have shape (N, D), got {arr.shape}")
    return arr


def cmd_add_samples(args: argparse.Namespace, config: dict) -> None:
    from teachable.db import class_index_for, get_connection, init_schema, insert_sample

    vectors = _load_embeddings(args.embeddings)
    with get_connection(config=config) as conn:
        init_schema(conn)
        class_index = class_index_for(conn, args.session, args.label)
        for v in vectors:
            insert_sample(conn, args.session, class_index, args.label, v)
    print(f"Added {len(vectors)} samples to '{args.label}' (class {class_index}) in session '{args.session}'")


def cmd_train(args: argparse.Namespace, config: dict) -> None:
    from teachable.db import get_connection, get_samples, init_schema, replay_samples, session_labels
    from teachable.trainer import CentroidTrainer

    with get_connection(config=config) as conn:
        init_schema(conn)
        labels = session_labels(conn, args.session)
        if not labels:
            raise SystemExit(f"No samples recorded for session '{args.session}'. Use add-samples first.")
        trainer = CentroidTrainer(labels, dimension_policy=config.get("trainer", {}).get("dimension_policy", "reset"))
        n = replay_samples(trainer, get_samples(conn, args.session))
    head = trainer.finalize()
    path = HeadStore(heads_dir(config)).save(args.name or args.session, head)
    counts = ", ".join(f"{label}={c}" for label, c in zip(trainer.labels, trainer.counts))
    print(f"Trained head from {n} samples ({counts}); dim={head.dim}")
    print(f"Saved: {path}")


def cmd_classify(args: argparse.Namespace, config: dict) -> None:
    from teachable.live import LiveInferenceLoop

    if args.smooth is not None:
        config = {**config, "classifier": {**config.get("classifier", {}), "smooth": args.smooth}}
    loop = LiveInferenceLoop.from_config(config)
    store = HeadStore(heads_dir(config))
    head_path = Path(args.head) if Path(args.head).suffix == ".json" else store.path_for(args.head)
    loop.load_head(head_path)
    loop.start()
    for i, z in enumerate(_load_embeddings(args.embeddings)):
        out = loop.tick(z)
        if out is None:
            print(f"{i}\t-\tskipped ({loop.last_skip_reason.value})")
        else:
            print(f"{i}\t{out[0]}\t{out[1]:.4f}")


def cmd_list(args: argparse.Namespace, config: dict) -> None:
    infos = HeadStore(heads_dir(config)).list_heads()
    if not infos:
        print("No heads saved.")
    for info in infos:
        print(f"{info.name}\t{len(info.classes)} classes\t{', '.join(info.classes)}")


def cmd_info(args: argparse.Namespace, config: dict) -> None:
    head = HeadStore(heads_dir(config)).load(args.name)
    print(f"{args.name}: {head.describe()}")
    for i, label in enumerate(head.class_labels):
        print(f"  [{i}] {label}")


def cmd_remove(args: argparse.Namespace, config: dict) -> None:
    if not HeadStore(heads_dir(config)).remove(args.name):
        raise SystemExit(f"Head not found: {args.name}")
    print(f"Removed {args.name}")


def cmd_export(args: argparse.Namespace, config: dict) -> None:
    print(HeadStore(heads_dir(config)).export_catalog())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Few-shot embedding classifier: teach, train, classify")
    parser.add_argument("--config", type=str, default="", help="Path to config.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add-samples", help="Record embeddings for one class")
    p.add_argument("--session", required=True, help="Session (detection) name")
    p.add_argument("--label", required=True, help="Class label")
    p.add_argument("--embeddings", required=True, help=".npy file, shape (N, D)")
    p.set_defaults(func=cmd_add_samples)

    p = sub.add_parser("train", help="Train a centroid head from recorded samples")
    p.add_argument("--session", required=True)
    p.add_argument("--name", default="", help="Head name (default: session name)")
    p.set_defaults(func=cmd_train)

    p = sub.add_parser("classify", help="Run embeddings through the live loop")
    p.add_argument("--head", required=True, help="Head name or path to a .json head")
    p.add_argument("--embeddings", required=True, help=".npy file, shape (N, D)")
    p.add_argument("--smooth", type=int, default=None, help="Override smoothing window")
    p.set_defaults(func=cmd_classify)

    p = sub.add_parser("list", help="List saved heads")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("info", help="Describe a saved head")
    p.add_argument("name")
    p.set_defaults(func=cmd_info)

    p = sub.add_parser("remove", help="Delete a saved head")
    p.add_argument("name")
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser("export", help="Print the head catalog as JSON")
    p.set_defaults(func=cmd_export)
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config = load_config(args.config or None)
    configure_logging(config)
    try:
        args.func(args, config)
    except (TeachableError, FileNotFoundError, ValueError) as e:
        logger.debug("Command failed", exc_info=True)
        raise SystemExit(f"Error: {e}") from e


if __name__ == "__main__":
    main(sys.argv[1:])
