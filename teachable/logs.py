"""Logging setup and one-line JSON lifecycle events."""
from __future__ import annotations

import json
import logging
import time
from typing import Any

ROOT_LOGGER = "teachable"
EVENTS_LOGGER = "teachable.events"


def configure_logging(config: dict[str, Any] | None = None) -> logging.Logger:
    """Attach one stream handler to the package logger and set its level. Idempotent."""
    log_cfg = (config or {}).get("logging", {})
    level = str(log_cfg.get("level", "INFO")).upper()
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level, logging.INFO))
    if not root.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        root.addHandler(h)
    logging.getLogger(EVENTS_LOGGER).disabled = not log_cfg.get("structured", True)
    return root


def log_structured(event: str, **kwargs: Any) -> None:
    """Emit one JSON line for log aggregation. Values must be JSON-safe (falls back to str)."""
    log = logging.getLogger(EVENTS_LOGGER)
    if not log.isEnabledFor(logging.INFO):
        return
    payload = {"event": event, "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()), **kwargs}
    log.info(json.dumps(payload, default=str))
