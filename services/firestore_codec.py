"""Conversion between Python values and Firestore REST ``Value`` objects."""

from __future__ import annotations

import base64
import math
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from datetime_utils import parse_rfc3339, to_rfc3339_utc


_SIMPLE_FIELD = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def encode_value(value: Any) -> Dict[str, Any]:
    if value is None:
        return {"nullValue": None}
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        if math.isnan(value):
            return {"doubleValue": "NaN"}
        if math.isinf(value):
            return {"doubleValue": "Infinity" if value > 0 else "-Infinity"}
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": to_rfc3339_utc(value, keep_micros=True)}
    if isinstance(value, date):
        return {"stringValue": value.isoformat()}
    if isinstance(value, (bytes, bytearray)):
        return {"bytesValue": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, Mapping):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(item) for item in value]}}
    raise TypeError(f"Cannot store {type(value).__name__} in Firestore")


def encode_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {str(key): encode_value(item) for key, item in data.items()}


def decode_value(value: Mapping[str, Any]) -> Any:
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return parse_rfc3339(value["timestampValue"])
    if "bytesValue" in value:
        return base64.b64decode(value["bytesValue"])
    if "referenceValue" in value:
        return value["referenceValue"]
    if "geoPointValue" in value:
        point = value["geoPointValue"] or {}
        return {"latitude": point.get("latitude"), "longitude": point.get("longitude")}
    if "mapValue" in value:
        return decode_fields((value["mapValue"] or {}).get("fields") or {})
    if "arrayValue" in value:
        return [decode_value(item) for item in (value["arrayValue"] or {}).get("values") or []]
    raise ValueError(f"Unknown Firestore value: {sorted(value)}")


def decode_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: decode_value(item) for key, item in fields.items()}


def decode_document(document: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if not document:
        return None
    return decode_fields(document.get("fields") or {})


def field_path(name: str) -> str:
    """Quote a top-level field name for use in an update mask."""

    if _SIMPLE_FIELD.match(name):
        return name
    escaped = name.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


def field_paths(names: Iterable[str]) -> List[str]:
    return [field_path(name) for name in names]


__all__ = [
    "decode_document",
    "decode_fields",
    "decode_value",
    "encode_fields",
    "encode_value",
    "field_path",
    "field_paths",
]
