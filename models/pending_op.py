"""Pending write operations and their journal encoding."""

from __future__ import annotations

import base64
import json
import secrets
import time
from copy import deepcopy
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from core.errors import PersistenceError, ValidationError
from datetime_utils import ensure_utc, parse_rfc3339, to_rfc3339_utc, utc_now


JOURNAL_VERSION = 1
_DATETIME_TAG = "__datetime__"
_DATE_TAG = "__date__"
_BYTES_TAG = "__bytes__"


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: Any) -> "OperationKind":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise ValidationError(f"Unsupported operation kind: {value!r}")


def new_operation_id() -> str:
    """Time-ordered id with a random suffix, e.g. ``op_1718000000123_9f2c1a0b``."""

    return f"op_{time.time_ns() // 1_000_000}_{secrets.token_hex(4)}"


def next_try_after(attempts: int, cap_sec: int = 30) -> datetime:
    delay = min(cap_sec, 2 ** max(attempts, 0))
    return utc_now() + timedelta(seconds=delay)


@dataclass
class PendingOperation:
    id: str
    kind: OperationKind
    collection: str
    document_id: str
    payload: Optional[Dict[str, Any]] = None
    enqueued_at: datetime = field(default_factory=utc_now)
    attempts: int = 0
    origin_id: Optional[str] = None
    last_error: Optional[str] = None
    next_try_at: Optional[datetime] = None

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.document_id}"

    def is_due(self, now: Optional[datetime] = None) -> bool:
        if self.next_try_at is None:
            return True
        return ensure_utc(self.next_try_at) <= (now or utc_now())

    def copy(self) -> "PendingOperation":
        return replace(self, payload=deepcopy(self.payload))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "collection": self.collection,
            "documentId": self.document_id,
            "payload": self.payload,
            "enqueuedAt": to_rfc3339_utc(self.enqueued_at, keep_micros=True),
            "attempts": self.attempts,
            "originId": self.origin_id,
            "lastError": self.last_error,
            "nextTryAt": to_rfc3339_utc(self.next_try_at, keep_micros=True),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PendingOperation":
        return cls(
            id=str(data["id"]),
            kind=OperationKind.parse(data["kind"]),
            collection=str(data["collection"]),
            document_id=str(data["documentId"]),
            payload=data.get("payload"),
            enqueued_at=parse_rfc3339(data.get("enqueuedAt")) or utc_now(),
            attempts=int(data.get("attempts") or 0),
            origin_id=data.get("originId"),
            last_error=data.get("lastError"),
            next_try_at=parse_rfc3339(data.get("nextTryAt")),
        )


def validate_operation(
    kind: Any,
    collection: Any,
    document_id: Any,
    payload: Optional[Mapping[str, Any]],
) -> OperationKind:
    """Check an operation before it is enqueued and return its parsed kind."""

    parsed = OperationKind.parse(kind)
    if not isinstance(collection, str) or not collection.strip():
        raise ValidationError("collection must be a non-empty string")
    if not isinstance(document_id, str) or not document_id.strip():
        raise ValidationError("document_id must be a non-empty string")
    if "/" in collection or "/" in document_id:
        raise ValidationError("collection and document_id must not contain '/'")

    if parsed is OperationKind.DELETE:
        if payload is not None:
            raise ValidationError("delete operations must not carry a payload")
        return parsed

    if payload is None or not isinstance(payload, Mapping):
        raise ValidationError(f"{parsed.value} operations require a payload mapping")
    if not payload:
        raise ValidationError(f"{parsed.value} operations require a non-empty payload")
    return parsed


# ----------------------------------------------------------------------
# journal encoding
def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_DATETIME_TAG: to_rfc3339_utc(value, keep_micros=True)}
    if isinstance(value, date):
        return {_DATE_TAG: value.isoformat()}
    if isinstance(value, (bytes, bytearray)):
        return {_BYTES_TAG: base64.b64encode(bytes(value)).decode("ascii")}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode_object(obj: Dict[str, Any]) -> Any:
    if len(obj) == 1 and _DATETIME_TAG in obj:
        return parse_rfc3339(obj[_DATETIME_TAG])
    if len(obj) == 1 and _DATE_TAG in obj:
        return date.fromisoformat(obj[_DATE_TAG])
    if len(obj) == 1 and _BYTES_TAG in obj:
        return base64.b64decode(obj[_BYTES_TAG])
    return obj


def dump_operations(operations: Iterable[PendingOperation]) -> str:
    document = {
        "version": JOURNAL_VERSION,
        "operations": [op.to_dict() for op in operations],
    }
    try:
        return json.dumps(document, ensure_ascii=False, default=_encode_value)
    except (TypeError, ValueError) as exc:
        raise PersistenceError(f"Pending operations are not serialisable: {exc}") from exc


def load_operations(raw: Optional[str]) -> List[PendingOperation]:
    """Decode the journal value; a bare list (unversioned journal) is accepted too."""

    if not raw:
        return []
    try:
        data = json.loads(raw, object_hook=_decode_object)
    except ValueError as exc:
        raise PersistenceError(f"Corrupt pending operations journal: {exc}") from exc

    if isinstance(data, dict):
        entries = data.get("operations") or []
    elif isinstance(data, list):
        entries = data
    else:
        raise PersistenceError("Pending operations journal has an unexpected shape")

    result: List[PendingOperation] = []
    for entry in entries:
        try:
            result.append(PendingOperation.from_dict(entry))
        except (KeyError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Invalid pending operation in journal: {exc}") from exc
    return result


__all__ = [
    "JOURNAL_VERSION",
    "OperationKind",
    "PendingOperation",
    "dump_operations",
    "load_operations",
    "new_operation_id",
    "next_try_after",
    "validate_operation",
]
