"""Document store backends: Firestore REST and an in-process store."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from copy import deepcopy
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, TypeVar

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from core.errors import StoreError
from core.settings import FIRESTORE
from services.firestore_codec import decode_document, encode_fields, encode_value, field_paths


logger = logging.getLogger("comedor.store")

RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    """Whether a failed direct write is worth queueing for replay."""

    if isinstance(exc, StoreError):
        return exc.status is None or exc.status in RETRYABLE_STATUS
    return isinstance(exc, OSError)


class DocumentStore(Protocol):
    async def create(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        ...

    async def update(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        ...

    async def delete(self, collection: str, document_id: str) -> None:
        ...

    async def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def query(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        ...


class MemoryDocumentStore:
    """Dict-backed store with the same write semantics as the Firestore backend."""

    def __init__(self) -> None:
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _docs(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self.collections.setdefault(collection, {})

    async def create(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        docs = self._docs(collection)
        if document_id in docs:
            raise StoreError(f"{collection}/{document_id} already exists", status=409)
        docs[document_id] = deepcopy(dict(data))

    async def update(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        docs = self._docs(collection)
        current = docs.setdefault(document_id, {})
        current.update(deepcopy(dict(data)))

    async def delete(self, collection: str, document_id: str) -> None:
        self._docs(collection).pop(document_id, None)

    async def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        doc = self._docs(collection).get(document_id)
        return deepcopy(doc) if doc is not None else None

    async def query(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        return [deepcopy(doc) for doc in self._docs(collection).values() if doc.get(field) == value]


class FirestoreDocumentStore:
    """Firestore through the REST v1 discovery client.

    The client and its ``httplib2.Http`` are not thread-safe, so every
    blocking call, including building the client, runs on one dedicated
    worker thread.
    """

    def __init__(
        self,
        auth,
        project_id: Optional[str] = None,
        database: Optional[str] = None,
        *,
        service=None,
    ) -> None:
        self.auth = auth
        self.project_id = project_id or FIRESTORE.project_id
        self.database = database or FIRESTORE.database
        self.service = service
        if not self.project_id:
            raise ValueError("Firestore project id is not configured (COMEDOR_FIRESTORE_PROJECT)")
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="firestore")

    @property
    def root(self) -> str:
        return f"projects/{self.project_id}/databases/{self.database}/documents"

    def _name(self, collection: str, document_id: str) -> str:
        return f"{self.root}/{collection}/{document_id}"

    def connect(self) -> None:
        if self.service is not None:
            return
        if hasattr(self.auth, "ensure_credentials"):
            self.auth.ensure_credentials()
        creds = self.auth.get_credentials() if hasattr(self.auth, "get_credentials") else None
        if creds is None:
            raise StoreError("Google credentials are not available")
        self.service = build("firestore", "v1", credentials=creds, cache_discovery=False)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def _documents(self):
        self.connect()
        return self.service.projects().databases().documents()

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, fn, *args)
        except HttpError as exc:
            status = getattr(getattr(exc, "resp", None), "status", None)
            raise StoreError(str(exc), status=int(status) if status else None) from exc
        except RefreshError as exc:
            raise StoreError(f"Google credentials could not be refreshed: {exc}") from exc
        except (OSError, httplib2.HttpLib2Error, TransportError) as exc:
            raise StoreError(f"Firestore unreachable: {exc}") from exc

    # ------------------------------------------------------------------
    def _create(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        self._documents().createDocument(
            parent=self.root,
            collectionId=collection,
            documentId=document_id,
            body={"fields": encode_fields(data)},
        ).execute()

    def _update(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        # with a mask and no precondition, patch writes the listed fields and creates missing documents
        self._documents().patch(
            name=self._name(collection, document_id),
            body={"fields": encode_fields(data)},
            updateMask_fieldPaths=field_paths(data.keys()),
        ).execute()

    def _delete(self, collection: str, document_id: str) -> None:
        try:
            self._documents().delete(name=self._name(collection, document_id)).execute()
        except HttpError as exc:
            status = getattr(getattr(exc, "resp", None), "status", None)
            if status and int(status) == 404:
                return
            raise

    def _get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self._documents().get(name=self._name(collection, document_id)).execute()
        except HttpError as exc:
            status = getattr(getattr(exc, "resp", None), "status", None)
            if status and int(status) == 404:
                return None
            raise
        return decode_document(response)

    def _query(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        body = {
            "structuredQuery": {
                "from": [{"collectionId": collection}],
                "where": {
                    "fieldFilter": {
                        "field": {"fieldPath": field_paths([field])[0]},
                        "op": "EQUAL",
                        "value": encode_value(value),
                    }
                },
            }
        }
        rows = self._documents().runQuery(parent=self.root, body=body).execute()
        result: List[Dict[str, Any]] = []
        for row in rows or []:
            doc = decode_document(row.get("document"))
            if doc is not None:
                result.append(doc)
        return result

    # ------------------------------------------------------------------
    async def create(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        logger.debug("create %s/%s", collection, document_id)
        await self._call(self._create, collection, document_id, data)

    async def update(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        logger.debug("update %s/%s", collection, document_id)
        await self._call(self._update, collection, document_id, data)

    async def delete(self, collection: str, document_id: str) -> None:
        logger.debug("delete %s/%s", collection, document_id)
        await self._call(self._delete, collection, document_id)

    async def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        return await self._call(self._get, collection, document_id)

    async def query(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        return await self._call(self._query, collection, field, value)


__all__ = [
    "DocumentStore",
    "FirestoreDocumentStore",
    "MemoryDocumentStore",
    "RETRYABLE_STATUS",
    "is_retryable",
]
