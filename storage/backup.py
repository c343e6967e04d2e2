"""Backups of the local journal database and exports of the pending queue."""
from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable

from models.pending_op import PendingOperation, dump_operations


def _backup_day(path: Path, prefix: str) -> datetime | None:
    stem = path.stem
    if not stem.startswith(prefix):
        return None
    try:
        return datetime.strptime(stem[len(prefix) :], "%Y-%m-%d")
    except ValueError:
        return None


def _copy_database(source: Path, destination: Path) -> None:
    # sqlite's online backup keeps the copy consistent while the app holds the file open
    src = sqlite3.connect(str(source))
    try:
        dst = sqlite3.connect(str(destination))
        try:
            src.backup(dst)
        finally:
            dst.close()
    finally:
        src.close()


def ensure_daily_backup(
    db_path: str | Path,
    backup_dir: str | Path,
    *,
    keep_days: int = 7,
) -> Path | None:
    """Write today's copy of ``db_path`` once and prune copies older than ``keep_days``."""

    db_file = Path(db_path)
    if not db_file.exists():
        return None

    target_dir = Path(backup_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    today = datetime.now().date()
    prefix = f"{db_file.stem}_"
    destination = target_dir / f"{prefix}{today.isoformat()}{db_file.suffix}"

    created: Path | None = None
    if not destination.exists():
        _copy_database(db_file, destination)
        created = destination

    if keep_days > 0:
        oldest_kept = today - timedelta(days=keep_days - 1)
        for candidate in target_dir.glob(f"{prefix}*{db_file.suffix}"):
            day = _backup_day(candidate, prefix)
            if day and day.date() < oldest_kept:
                try:
                    candidate.unlink()
                except OSError:
                    pass

    return created


def export_pending_operations(operations: Iterable[PendingOperation], path: str | Path) -> Path:
    """Write a readable JSON snapshot of the pending queue for admins."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    document = json.loads(dump_operations(operations))
    target.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
    return target


__all__ = ["ensure_daily_backup", "export_pending_operations"]
