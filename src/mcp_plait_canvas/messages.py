"""Push channel message envelope.

Every frame is a JSON object ``{type, element?, elementId?, count?,
timestamp?}``.
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import ValidationError

ELEMENT_CREATED = "element_created"
ELEMENT_DELETED = "element_deleted"
ELEMENTS_SYNCED = "elements_synced"
SYNC_STATUS = "sync_status"

MESSAGE_TYPES = (ELEMENT_CREATED, ELEMENT_DELETED, ELEMENTS_SYNCED, SYNC_STATUS)


def utc_now() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def element_created(element: dict) -> dict:
    return {"type": ELEMENT_CREATED, "element": element}


def element_deleted(element_id: str) -> dict:
    return {"type": ELEMENT_DELETED, "elementId": element_id}


def elements_synced(count: int, timestamp: Optional[str] = None) -> dict:
    return {"type": ELEMENTS_SYNCED, "count": count, "timestamp": timestamp or utc_now()}


def sync_status(count: int, timestamp: Optional[str] = None) -> dict:
    return {"type": SYNC_STATUS, "count": count, "timestamp": timestamp or utc_now()}


def encode(message: dict) -> str:
    return json.dumps(message, default=str)


def parse_message(raw: Any) -> dict:
    """Decode one inbound frame.

    Unknown ``type`` values are returned as-is; deciding what to ignore is the
    receiver's job.
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Invalid message: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("Invalid message: expected a JSON object")
    if not isinstance(data.get("type"), str):
        raise ValidationError("Invalid message: missing type")
    return data
