# comedor/services/attendance.py
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from core.errors import ValidationError
from core.settings import FIRESTORE
from datetime_utils import parse_week_start, utc_now
from models.pending_op import OperationKind
from services.document_store import DocumentStore
from services.offline_writer import OfflineWriter, WriteResult


DAYS_OF_WEEK = ("monday", "tuesday", "wednesday", "thursday", "friday")


def _validate_count(day: str, count: Any) -> int:
    if day not in DAYS_OF_WEEK:
        raise ValidationError(f"Invalid day: {day}. Expected one of: {', '.join(DAYS_OF_WEEK)}")
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise ValidationError(f"Attendance count for {day} must be a non-negative integer")
    return count


def _validate_counts(counts: Optional[Mapping[str, Any]]) -> Dict[str, int]:
    return {day: _validate_count(day, value) for day, value in (counts or {}).items()}


class AttendanceService:
    """Weekly attendance confirmations per coordinator."""

    def __init__(
        self,
        writer: OfflineWriter,
        store: DocumentStore,
        *,
        collection: str = FIRESTORE.attendance_collection,
        created_by: Optional[str] = None,
    ) -> None:
        self.writer = writer
        self.store = store
        self.collection = collection
        self.created_by = created_by or "system"

    @staticmethod
    def confirmation_id(coordinator_id: str, week_start: str) -> str:
        return f"{coordinator_id}_{week_start}"

    async def save_confirmation(
        self,
        coordinator_id: str,
        week_start: str,
        counts: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Create the week's confirmation or merge ``counts`` into the existing one."""

        if not coordinator_id or not week_start:
            raise ValidationError("A confirmation needs a coordinator id and a week start date")
        if parse_week_start(week_start) is None:
            raise ValidationError("Week start date must use the YYYY-MM-DD format")
        validated = _validate_counts(counts)

        confirmation_id = self.confirmation_id(coordinator_id, week_start)
        existing = await self.writer.get(self.collection, confirmation_id)
        now = utc_now()
        if existing:
            data = {
                **existing,
                "attendanceCounts": {**(existing.get("attendanceCounts") or {}), **validated},
                "updatedAt": now,
            }
        else:
            data = {
                "id": confirmation_id,
                "coordinatorId": coordinator_id,
                "weekStartDate": week_start,
                "attendanceCounts": {day: validated.get(day, 0) for day in DAYS_OF_WEEK},
                "createdAt": now,
                "updatedAt": now,
                "createdBy": self.created_by,
            }

        await self.writer.write(OperationKind.UPDATE, self.collection, confirmation_id, data)
        return confirmation_id

    async def update_day_count(self, confirmation_id: str, day: str, count: int) -> WriteResult:
        _validate_count(day, count)
        confirmation = await self.get_confirmation(confirmation_id)
        if confirmation is None:
            raise LookupError(f"Confirmation {confirmation_id} not found")
        counts = {**(confirmation.get("attendanceCounts") or {}), day: count}
        return await self.writer.write(
            OperationKind.UPDATE,
            self.collection,
            confirmation_id,
            {"attendanceCounts": counts, "updatedAt": utc_now()},
        )

    async def delete_confirmation(self, confirmation_id: str) -> WriteResult:
        return await self.writer.write(OperationKind.DELETE, self.collection, confirmation_id)

    async def get_confirmation(self, confirmation_id: str) -> Optional[Dict[str, Any]]:
        return await self.writer.get(self.collection, confirmation_id)

    async def list_for_coordinator(self, coordinator_id: str) -> List[Dict[str, Any]]:
        rows = await self.store.query(self.collection, "coordinatorId", coordinator_id)
        return sorted(rows, key=lambda row: str(row.get("weekStartDate") or ""))


__all__ = ["AttendanceService", "DAYS_OF_WEEK"]
