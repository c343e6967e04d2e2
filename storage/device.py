"""Stable installation identifier used as the origin of pending writes."""
from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Optional

from core.settings import DATA_DIR


ORIGIN_ID_PATH = DATA_DIR / "origin_id.txt"


def _read_origin(path: Path) -> Optional[str]:
    try:
        value = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return value or None


def _store_origin(path: Path, value: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    try:
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            try:
                tmp.unlink()
            except OSError:
                pass


def get_origin_id(path: Optional[Path] = None) -> str:
    """Return the id of this installation, creating it on first use."""

    target = Path(path or ORIGIN_ID_PATH)
    existing = _read_origin(target)
    if existing:
        return existing

    origin = f"device-{uuid.uuid4().hex[:12]}"
    try:
        _store_origin(target, origin)
    except OSError:
        # Not persisted; a fresh id is generated on the next start.
        pass
    return origin


__all__ = ["ORIGIN_ID_PATH", "get_origin_id"]
