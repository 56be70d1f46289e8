"""
Head store: a directory of <name>.json heads, plus the detection-setup DTO
(name + class labels, no samples) used to share a setup between machines.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from teachable.errors import HeadError, HeadNotReadyError
from teachable.head import Head
from teachable.logs import log_structured

logger = logging.getLogger(__name__)

# Characters that are invalid in file names on common platforms
_INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_name(name: str) -> str:
    """Make a head name safe as a file stem. Raises HeadError if nothing is left."""
    safe = _INVALID_NAME_CHARS.sub("_", (name or "").strip()).strip()
    if not safe or safe in (".", ".."):
        raise HeadError(f"invalid head name {name!r}")
    return safe


@dataclass
class HeadInfo:
    name: str
    classes: list[str]
    path: str


@dataclass
class DetectionSetup:
    """Name and class labels of a detection, without samples."""
    name: str
    classes: list[str] = field(default_factory=list)
    tag: str | None = None
    version: str | None = None
    notes: str | None = None


def export_setup(name: str, classes: list[str], tag: str | None = None,
                 version: str | None = None, notes: str | None = None) -> str:
    setup = DetectionSetup(name=name, classes=list(classes), tag=tag, version=version, notes=notes)
    return json.dumps(asdict(setup), indent=2)


def parse_setup(text: str) -> DetectionSetup:
    """Parse a setup JSON. 'name' is required; raises HeadError otherwise."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise HeadError(f"setup JSON parse error: {e}") from e
    if not isinstance(data, dict) or not str(data.get("name") or "").strip():
        raise HeadError("setup JSON is missing required 'name'")
    classes = data.get("classes") or []
    if not isinstance(classes, list):
        raise HeadError("setup 'classes' must be a list")
    return DetectionSetup(
        name=sanitize_name(str(data["name"])),
        classes=[str(c) for c in classes],
        tag=data.get("tag"),
        version=data.get("version"),
        notes=data.get("notes"),
    )


class HeadStore:
    def __init__(self, heads_dir: Path | str):
        self.heads_dir = Path(heads_dir)

    def path_for(self, name: str) -> Path:
        return self.heads_dir / f"{sanitize_name(name)}.json"

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def save(self, name: str, head: Head) -> Path:
        if not head.is_usable():
            raise HeadNotReadyError(f"refusing to save unusable head '{name}' ({head.describe()})")
        path = head.save(self.path_for(name))
        logger.info("Head saved: %s", path)
        log_structured("head_saved", name=path.stem, path=str(path))
        return path

    def load(self, name: str) -> Head:
        return Head.load(self.path_for(name))

    def remove(self, name: str) -> bool:
        path = self.path_for(name)
        if not path.is_file():
            logger.warning("Remove: head not found %s", path)
            return False
        path.unlink()
        logger.info("Removed head '%s'", path.stem)
        log_structured("head_removed", name=path.stem)
        return True

    def list_heads(self) -> list[HeadInfo]:
        """All readable heads in the directory, sorted by name. Unreadable files are skipped."""
        if not self.heads_dir.is_dir():
            return []
        out: list[HeadInfo] = []
        for f in sorted(self.heads_dir.glob("*.json")):
            try:
                data: Any = json.loads(f.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning("Bad head '%s': %s", f, e)
                continue
            classes = data.get("classes") if isinstance(data, dict) else None
            if not isinstance(classes, list):
                classes = []
            out.append(HeadInfo(name=f.stem, classes=[str(c) for c in classes], path=str(f)))
        return out

    def export_catalog(self) -> str:
        return json.dumps({"detections": [asdict(i) for i in self.list_heads()]}, indent=2)
