from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Optional


UTC = timezone.utc

_FRACTION = re.compile(r"\.(\d+)")


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Naive values are taken as UTC; aware ones are converted."""

    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _normalize_fraction(digits: str) -> str:
    # Firestore reports nanoseconds; datetime keeps microseconds
    return digits[:6].ljust(6, "0")


def parse_rfc3339(s: Optional[str]) -> Optional[datetime]:
    """Parse an RFC3339 timestamp into an aware UTC datetime, or ``None``."""

    value = (s or "").strip()
    if not value:
        return None
    if value[-1] in "zZ":
        value = value[:-1] + "+00:00"
    value = _FRACTION.sub(lambda m: "." + _normalize_fraction(m.group(1)), value, count=1)
    try:
        return ensure_utc(datetime.fromisoformat(value))
    except ValueError:
        return None


def to_rfc3339_utc(dt: Optional[datetime], *, keep_micros: bool = False) -> Optional[str]:
    value = ensure_utc(dt)
    if value is None:
        return None
    if not keep_micros:
        value = value.replace(microsecond=0)
    return value.isoformat().replace("+00:00", "Z")


def parse_week_start(value: str) -> Optional[date]:
    """Parse a ``YYYY-MM-DD`` week start; ``None`` when malformed."""

    if not isinstance(value, str) or len(value) != 10:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None


__all__ = [
    "UTC",
    "ensure_utc",
    "parse_rfc3339",
    "parse_week_start",
    "to_rfc3339_utc",
    "utc_now",
]
