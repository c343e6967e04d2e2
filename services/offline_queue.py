from __future__ import annotations

import asyncio
import logging
from copy import deepcopy
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from core.errors import PermanentReplayError, PersistenceError, TransientReplayError, ValidationError
from core.settings import OFFLINE, OFFLINE_LOG_PATH
from datetime_utils import utc_now
from models.pending_op import (
    OperationKind,
    PendingOperation,
    dump_operations,
    load_operations,
    new_operation_id,
    next_try_after,
    validate_operation,
)
from services.connectivity import ConnectivityMonitor
from services.document_store import DocumentStore
from services.signals import Signal
from storage.journal import LocalJournal


def _ensure_logger() -> logging.Logger:
    logger = logging.getLogger("comedor.offline")
    if not logger.handlers:
        OFFLINE_LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(OFFLINE_LOG_PATH, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


@dataclass(frozen=True)
class QueueStatus:
    is_online: bool
    manual_offline_mode: bool
    persistence_enabled: bool
    pending_count: int

    @property
    def is_offline(self) -> bool:
        return not self.is_online or self.manual_offline_mode


@dataclass
class SyncSummary:
    total: int = 0
    successful: int = 0
    pending: int = 0
    skipped: int = 0
    failed_permanently: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "pending": self.pending,
            "skipped": self.skipped,
            "failedPermanently": list(self.failed_permanently),
        }


class OfflineSyncQueue:
    """Journal of writes that could not reach the document store yet.

    Operations are replayed in enqueue order whenever the app is online. Each
    replay attempt counts against ``max_attempts``; an operation that runs out
    of attempts is dropped and reported in the sync summary.
    """

    def __init__(
        self,
        store: DocumentStore,
        journal: LocalJournal,
        monitor: ConnectivityMonitor,
        *,
        max_attempts: int = OFFLINE.max_attempts,
        journal_key: str = OFFLINE.journal_key,
        backoff_enabled: bool = OFFLINE.backoff_enabled,
        backoff_cap_sec: int = OFFLINE.backoff_cap_sec,
        origin_id: Optional[str] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.journal = journal
        self.monitor = monitor
        self.max_attempts = max_attempts
        self.journal_key = journal_key
        self.backoff_enabled = backoff_enabled
        self.backoff_cap_sec = backoff_cap_sec
        self.origin_id = origin_id
        self.logger = _ensure_logger()

        self._queue: List[PendingOperation] = []
        self._loaded = False
        self._initialized = False
        self._manual_offline = False
        self._persistence_enabled = True
        self._unsubscribe_monitor: Optional[Callable[[], None]] = None
        self._inflight: Optional[asyncio.Future] = None
        self._background: Set[asyncio.Task] = set()
        self._status_changed: Signal[QueueStatus] = Signal("status", self.logger)
        self._sync_completed: Signal[SyncSummary] = Signal("sync", self.logger)

    # ------------------------------------------------------------------
    # Lifecycle
    async def initialize(self) -> None:
        if self._initialized:
            return
        self._ensure_loaded()
        self._unsubscribe_monitor = self.monitor.subscribe(self._on_connectivity_change)
        self._initialized = True
        self.logger.info(
            "Offline queue ready: %d pending, %s",
            len(self._queue),
            "offline" if self.is_offline() else "online",
        )
        self._emit_status()

    def close(self) -> None:
        if self._unsubscribe_monitor is not None:
            self._unsubscribe_monitor()
            self._unsubscribe_monitor = None
        self._initialized = False

    async def drain(self) -> None:
        """Wait for background syncs started by registrations and connectivity edges."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        try:
            operations = load_operations(self.journal.get(self.journal_key))
        except PersistenceError as exc:
            self.logger.error("Could not load pending operations, starting empty: %s", exc)
            operations = []
            self._persistence_enabled = False
        self._queue = operations
        self._loaded = True

    # ------------------------------------------------------------------
    # Connectivity
    def is_offline(self) -> bool:
        return not self.monitor.is_online or self._manual_offline

    def go_offline(self) -> None:
        if self._manual_offline:
            return
        self._manual_offline = True
        self.logger.info("Manual offline mode enabled")
        self._emit_status()

    def go_online(self) -> Optional[asyncio.Task]:
        """Leave manual offline mode; returns the sync task started, if any."""

        if self._manual_offline:
            self._manual_offline = False
            self.logger.info("Manual offline mode disabled")
            self._emit_status()
        if self.monitor.is_online:
            return self._schedule_sync("manual online")
        return None

    def _on_connectivity_change(self, online: bool) -> None:
        self._emit_status()
        if online and not self._manual_offline:
            self._schedule_sync("connection restored")

    # ------------------------------------------------------------------
    # Queue
    def register_pending_operation(
        self,
        kind: OperationKind | str,
        collection: str,
        document_id: str,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        origin_id: Optional[str] = None,
    ) -> str:
        parsed = validate_operation(kind, collection, document_id, payload)
        self._ensure_loaded()

        operation = PendingOperation(
            id=new_operation_id(),
            kind=parsed,
            collection=collection,
            document_id=document_id,
            payload=None if parsed is OperationKind.DELETE else deepcopy(dict(payload or {})),
            enqueued_at=utc_now(),
            origin_id=origin_id or self.origin_id,
        )
        try:
            dump_operations([operation])
        except PersistenceError as exc:
            raise ValidationError(f"Payload for {operation.path} cannot be journaled: {exc}") from exc
        # journal first, so a crash after this point cannot lose the write
        self._persist(self._queue + [operation])
        self._queue.append(operation)
        self.logger.info("Queued %s %s (%s)", parsed.value, operation.path, operation.id)
        self._emit_status()

        if not self.is_offline():
            self._schedule_sync("new operation")
        return operation.id

    def get_pending_operations_count(self) -> int:
        self._ensure_loaded()
        return len(self._queue)

    def get_pending_operations(self) -> List[PendingOperation]:
        self._ensure_loaded()
        return [op.copy() for op in self._queue]

    def pending_for(self, collection: str, document_id: str) -> List[PendingOperation]:
        return [
            op
            for op in self.get_pending_operations()
            if op.collection == collection and op.document_id == document_id
        ]

    # ------------------------------------------------------------------
    # Replay
    async def sync_pending_operations(self) -> SyncSummary:
        """Replay the queue; concurrent callers share the run already in flight."""

        if self._inflight is not None and not self._inflight.done():
            return await asyncio.shield(self._inflight)
        self._inflight = asyncio.ensure_future(self._run())
        return await asyncio.shield(self._inflight)

    async def _run(self) -> SyncSummary:
        self._ensure_loaded()
        summary = SyncSummary()
        if self.is_offline() or not self._queue:
            summary.pending = len(self._queue)
            self._sync_completed.emit(summary)
            return summary

        self.logger.info("Syncing %d pending operations", len(self._queue))
        seen: Set[str] = set()
        batch = list(self._queue)
        while batch:
            seen.update(op.id for op in batch)
            await self._replay(batch, summary)
            if self.is_offline():
                break
            # operations registered while the pass was running
            batch = [op for op in self._queue if op.id not in seen]

        summary.pending = len(self._queue)
        if summary.pending:
            self.logger.warning("%d operations still pending after sync", summary.pending)
        else:
            self.logger.info("All pending operations synced")
        self._emit_status()
        self._sync_completed.emit(summary)
        return summary

    async def _replay(self, batch: List[PendingOperation], summary: SyncSummary) -> None:
        done: Set[str] = set()
        now = utc_now()
        for op in batch:
            if self.is_offline():
                self.logger.info("Went offline during sync; stopping at %s", op.id)
                break
            if self.backoff_enabled and not op.is_due(now):
                summary.skipped += 1
                continue

            op.attempts += 1
            summary.total += 1
            try:
                await self._dispatch(op)
            except Exception as exc:
                op.last_error = str(exc)[:1000]
                if op.attempts >= self.max_attempts:
                    error = PermanentReplayError(op, exc)
                    self.logger.error("Dropping after %d attempts: %s", op.attempts, error)
                    done.add(op.id)
                    summary.failed_permanently.append(op.id)
                else:
                    error = TransientReplayError(op, exc)
                    self.logger.warning("Replay attempt %d/%d failed: %s", op.attempts, self.max_attempts, error)
                    if self.backoff_enabled:
                        op.next_try_at = next_try_after(op.attempts, self.backoff_cap_sec)
                continue

            done.add(op.id)
            summary.successful += 1
            self.logger.debug("Replayed %s %s", op.kind.value, op.path)

        self._queue = [op for op in self._queue if op.id not in done]
        self._persist(self._queue)

    async def _dispatch(self, op: PendingOperation) -> None:
        if op.kind is OperationKind.CREATE:
            await self.store.create(op.collection, op.document_id, op.payload or {})
        elif op.kind is OperationKind.UPDATE:
            await self.store.update(op.collection, op.document_id, op.payload or {})
        else:
            await self.store.delete(op.collection, op.document_id)

    def _schedule_sync(self, reason: str) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.debug("No running event loop; sync for %s deferred", reason)
            return None
        self.logger.debug("Scheduling sync: %s", reason)
        task = loop.create_task(self.sync_pending_operations())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ------------------------------------------------------------------
    # Persistence & notifications
    def _persist(self, operations: List[PendingOperation]) -> bool:
        try:
            self.journal.set(self.journal_key, dump_operations(operations))
        except (PersistenceError, OSError) as exc:
            self.logger.error("Failed to persist pending operations: %s", exc)
            if self._persistence_enabled:
                self._persistence_enabled = False
                self._emit_status()
            return False
        if not self._persistence_enabled:
            self._persistence_enabled = True
            self.logger.info("Journal writes recovered")
        return True

    def status(self) -> QueueStatus:
        return QueueStatus(
            is_online=self.monitor.is_online,
            manual_offline_mode=self._manual_offline,
            persistence_enabled=self._persistence_enabled,
            pending_count=len(self._queue),
        )

    def _emit_status(self) -> None:
        self._status_changed.emit(self.status())

    def on_status_change(self, callback: Callable[[QueueStatus], None]) -> Callable[[], None]:
        unsubscribe = self._status_changed.connect(callback)
        try:
            callback(self.status())
        except Exception:
            self.logger.exception("Status listener failed")
        return unsubscribe

    def on_sync_complete(self, callback: Callable[[SyncSummary], None]) -> Callable[[], None]:
        return self._sync_completed.connect(callback)


__all__ = ["OfflineSyncQueue", "QueueStatus", "SyncSummary", "OFFLINE_LOG_PATH"]
