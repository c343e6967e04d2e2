"""Durable key/value journal used to keep pending writes across restarts."""
from __future__ import annotations

from typing import Callable, Dict, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from core.errors import PersistenceError
from datetime_utils import utc_now
from models.journal_entry import JournalEntry


class LocalJournal(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


def _default_session_factory() -> Session:
    from storage.db import get_session

    return get_session()


class SqlJournal:
    """``LocalJournal`` stored in the ``journalentry`` table.

    Each ``set`` commits on its own, so a value is durable once the call returns.
    """

    def __init__(self, session_factory: Callable[[], Session] = _default_session_factory):
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as session:
                row = session.get(JournalEntry, key)
                return row.value if row else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read journal key {key!r}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        try:
            with self._session_factory() as session:
                row = session.get(JournalEntry, key)
                if row is None:
                    row = JournalEntry(key=key, value=value)
                else:
                    row.value = value
                    row.updated_at = utc_now()
                session.add(row)
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to write journal key {key!r}: {exc}") from exc


class MemoryJournal:
    """Process-local journal; ``values`` is exposed for inspection in tests."""

    def __init__(self, values: Optional[Dict[str, str]] = None):
        self.values: Dict[str, str] = dict(values or {})

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value


__all__ = ["LocalJournal", "MemoryJournal", "SqlJournal"]
