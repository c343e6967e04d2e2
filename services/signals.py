"""Minimal typed observer used for status and sync notifications."""
from __future__ import annotations

import logging
from typing import Callable, Generic, List, Optional, TypeVar


T = TypeVar("T")


class Signal(Generic[T]):
    def __init__(self, name: str, logger: Optional[logging.Logger] = None) -> None:
        self.name = name
        self._listeners: List[Callable[[T], None]] = []
        self._logger = logger or logging.getLogger("comedor.signals")

    def connect(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it again."""

        if callback not in self._listeners:
            self._listeners.append(callback)

        def _disconnect() -> None:
            self.disconnect(callback)

        return _disconnect

    def disconnect(self, callback: Callable[[T], None]) -> None:
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    def emit(self, value: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                self._logger.exception("Listener for %s failed", self.name)

    def __len__(self) -> int:
        return len(self._listeners)


__all__ = ["Signal"]
