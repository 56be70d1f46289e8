"""Load config from config.yaml (or TEACHABLE_CONFIG override)."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"
PACKAGE_DIR = Path(__file__).resolve().parent


def load_config(path: Path | str | None = None) -> dict[str, Any]:
    """Load YAML config merged over defaults, section by section. Defaults only if no file."""
    p = Path(path or os.environ.get("TEACHABLE_CONFIG") or CONFIG_PATH)
    if not p.is_file():
        return _default_config()
    with open(p, encoding="utf-8") as f:
        out = yaml.safe_load(f) or {}
    if not isinstance(out, dict):
        raise ValueError(f"config {p} must be a mapping, got {type(out).__name__}")
    merged = _default_config()
    for key, value in out.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def heads_dir(config: dict[str, Any]) -> Path:
    """Resolve the heads directory from config or default."""
    d = config.get("storage", {}).get("heads_dir")
    return Path(d) if d else PACKAGE_DIR.parent / "heads"


def _default_config() -> dict[str, Any]:
    return {
        "classifier": {"smooth": 5, "classify_every": 2, "log_every": 15},
        "scorer": {"strict_dimensions": False},
        "trainer": {
            "dimension_policy": "reset",
            "session": "session1",
            "classes": ["class_A", "class_B"],
        },
        "storage": {"heads_dir": ""},
        "database": {"path": ""},
        "logging": {"level": "INFO", "structured": True},
    }
