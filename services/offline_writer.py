"""Direct writes with a fallback to the offline queue."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional

from core.errors import StoreError
from models.pending_op import OperationKind, PendingOperation, validate_operation
from services.document_store import DocumentStore, is_retryable
from services.offline_queue import OfflineSyncQueue


logger = logging.getLogger("comedor.offline.writer")


@dataclass(frozen=True)
class WriteResult:
    applied: bool
    operation_id: Optional[str] = None

    @property
    def queued(self) -> bool:
        return self.operation_id is not None


def apply_pending(
    document: Optional[Dict[str, Any]], operations: Iterable[PendingOperation]
) -> Optional[Dict[str, Any]]:
    """Project queued writes onto a document read from the store, oldest first."""

    current = dict(document) if document is not None else None
    for op in operations:
        if op.kind is OperationKind.DELETE:
            current = None
        elif op.kind is OperationKind.CREATE:
            current = dict(op.payload or {})
        else:
            current = {**(current or {}), **(op.payload or {})}
    return current


class OfflineWriter:
    def __init__(self, store: DocumentStore, queue: OfflineSyncQueue) -> None:
        self.store = store
        self.queue = queue

    async def write(
        self,
        kind: OperationKind | str,
        collection: str,
        document_id: str,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> WriteResult:
        """Write to the store now, or queue the write when that is not possible.

        The write is queued when offline, when earlier writes to the same
        document are still pending (to keep them in order), or when the store
        fails with a retryable error. Other store errors propagate.
        """

        parsed = validate_operation(kind, collection, document_id, payload)
        if self.queue.is_offline() or self.queue.pending_for(collection, document_id):
            return self._enqueue(parsed, collection, document_id, payload)

        try:
            if parsed is OperationKind.CREATE:
                await self.store.create(collection, document_id, payload or {})
            elif parsed is OperationKind.UPDATE:
                await self.store.update(collection, document_id, payload or {})
            else:
                await self.store.delete(collection, document_id)
        except (StoreError, OSError) as exc:
            if not is_retryable(exc):
                raise
            logger.warning("Direct %s of %s/%s failed, queueing: %s", parsed.value, collection, document_id, exc)
            return self._enqueue(parsed, collection, document_id, payload)
        return WriteResult(applied=True)

    def _enqueue(self, kind, collection, document_id, payload) -> WriteResult:
        op_id = self.queue.register_pending_operation(kind, collection, document_id, payload)
        return WriteResult(applied=False, operation_id=op_id)

    async def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        """Read a document as it will look once the pending writes are replayed."""

        document: Optional[Dict[str, Any]] = None
        if not self.queue.is_offline():
            try:
                document = await self.store.get(collection, document_id)
            except (StoreError, OSError) as exc:
                logger.warning("Read of %s/%s failed, using queued writes only: %s", collection, document_id, exc)
        return apply_pending(document, self.queue.pending_for(collection, document_id))


__all__ = ["OfflineWriter", "WriteResult", "apply_pending"]
