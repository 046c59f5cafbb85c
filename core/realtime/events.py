"""Row change events delivered by the database change feed."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from core.enums import ChangeType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """
    One row-level change.

    record is the new row (INSERT/UPDATE), old_record the previous row
    (UPDATE/DELETE). Either may be empty.
    """

    table: str
    type: ChangeType
    record: dict[str, Any] = field(default_factory=dict)
    old_record: dict[str, Any] = field(default_factory=dict)

    @property
    def row(self) -> dict[str, Any]:
        """The row the event is about: new row if any, else the old one."""
        return self.record or self.old_record

    @property
    def row_id(self) -> str | None:
        row_id = self.row.get("id")
        return str(row_id) if row_id is not None else None


def parse_change_payload(payload: str) -> ChangeEvent | None:
    """
    Parse a NOTIFY payload into a ChangeEvent.

    Payload format (see the notify trigger in the initial migration):
        {"table": "...", "type": "INSERT", "record": {...}, "old_record": {...}}

    Returns None for payloads that cannot be parsed.
    """
    try:
        data = json.loads(payload)
        return ChangeEvent(
            table=data["table"],
            type=ChangeType(data["type"]),
            record=data.get("record") or {},
            old_record=data.get("old_record") or {},
        )
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(f"Ignoring malformed change payload: {e}")
        return None


def local_update(table: str, record: dict[str, Any]) -> ChangeEvent:
    """Build an UPDATE event for a write this process just made."""
    return ChangeEvent(
        table=table,
        type=ChangeType.update,
        record=_jsonable(record),
    )


def local_insert(table: str, record: dict[str, Any]) -> ChangeEvent:
    return ChangeEvent(
        table=table,
        type=ChangeType.insert,
        record=_jsonable(record),
    )


def local_delete(table: str, record: dict[str, Any]) -> ChangeEvent:
    return ChangeEvent(
        table=table,
        type=ChangeType.delete,
        old_record=_jsonable(record),
    )


def _jsonable(record: dict[str, Any]) -> dict[str, Any]:
    # Match the shape of rows arriving over NOTIFY (ids and dates as strings)
    return {
        key: value if isinstance(value, (str, int, float, bool, type(None))) else str(value)
        for key, value in record.items()
    }
