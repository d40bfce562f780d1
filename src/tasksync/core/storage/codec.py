"""Snapshot codec.

Current snapshots are a JSON object carrying ``schemaVersion``. Two older
shapes are still accepted on decode:

- a bare JSON array of lists (the first on-disk format), and
- objects without ``schemaVersion``, ``lastModified`` or tombstone maps.

Older writers stored dates as seconds since 2001-01-01 UTC; numeric date
fields are converted on decode. Encoding always produces the current schema.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from pydantic import ValidationError

from ...exceptions import DecodeError
from ...models.models import SCHEMA_VERSION, Document

logger = logging.getLogger(__name__)

REFERENCE_DATE = datetime(2001, 1, 1, tzinfo=timezone.utc)

_DATE_FIELDS = ("reminderDate", "lastModified")


def encode_document(document: Document) -> bytes:
    """Serialize ``document`` to UTF-8 JSON in the current schema."""
    wire = document.to_wire()
    wire["schemaVersion"] = SCHEMA_VERSION
    return json.dumps(wire, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode_document(data: bytes) -> Document:
    """Parse a snapshot in the current or any legacy schema.

    Args:
        data: Raw snapshot bytes

    Returns:
        Decoded document

    Raises:
        DecodeError: If the payload matches no known schema
    """
    try:
        raw = json.loads(data)
    except (UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"Snapshot is not valid JSON: {e}") from e

    if isinstance(raw, list):
        logger.debug("Decoding legacy list-array snapshot (%d lists)", len(raw))
        raw = {"lists": raw, "schemaVersion": 1}
    elif not isinstance(raw, dict):
        raise DecodeError(f"Unexpected snapshot root: {type(raw).__name__}")

    try:
        return Document.model_validate(_upgrade(raw))
    except (ValidationError, TypeError, ValueError) as e:
        raise DecodeError(f"Snapshot does not match any known schema: {e}") from e


def _upgrade(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``raw`` with legacy date encodings converted."""
    upgraded = _convert_tombstones(raw, "deletedListIDs")
    lists = raw.get("lists")
    if isinstance(lists, list):
        upgraded["lists"] = [_upgrade_list(task_list) for task_list in lists]
    return upgraded


def _upgrade_list(task_list: Any) -> Any:
    if not isinstance(task_list, dict):
        return task_list
    upgraded = _convert_tombstones(_convert_dates(task_list), "deletedItemIDs")
    items = task_list.get("items")
    if isinstance(items, list):
        upgraded["items"] = [
            _convert_dates(item) if isinstance(item, dict) else item for item in items
        ]
    return upgraded


def _convert_dates(record: Dict[str, Any]) -> Dict[str, Any]:
    converted = dict(record)
    for key in _DATE_FIELDS:
        value = record.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            converted[key] = from_reference_seconds(value)
    return converted


def _convert_tombstones(record: Dict[str, Any], key: str) -> Dict[str, Any]:
    converted = dict(record)
    tombstones = record.get(key)
    if isinstance(tombstones, dict):
        converted[key] = {
            entity_id: from_reference_seconds(when)
            if isinstance(when, (int, float)) and not isinstance(when, bool)
            else when
            for entity_id, when in tombstones.items()
        }
    return converted


def from_reference_seconds(seconds: float) -> datetime:
    """Convert seconds since 2001-01-01 UTC to a datetime."""
    return REFERENCE_DATE + timedelta(seconds=seconds)


def peek_schema_version(data: bytes) -> int:
    """Schema version of a snapshot without fully decoding it (0 if unknown)."""
    try:
        raw = json.loads(data)
    except (UnicodeDecodeError, ValueError):
        return 0
    if isinstance(raw, list):
        return 1
    if isinstance(raw, dict):
        version = raw.get("schemaVersion", 1)
        return version if isinstance(version, int) else 0
    return 0

