"""
Per-user state folded from change events.

Each counter keeps the set of entity ids it currently counts, so applying
the same event twice (an optimistic local event followed by the database
echo, or a redelivery) never double-counts, and a count can never go
below zero.

Every apply() returns True when the visible value changed.
"""

from collections.abc import Callable, Iterable
from datetime import date, datetime, timezone
from typing import Any
from uuid import UUID

from core.enums import ChangeType

from .events import ChangeEvent


def _id(value: Any) -> str | None:
    return str(value) if value is not None else None


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class UnreadMessageCounter:
    """Unread messages addressed to one user across their conversations."""

    def __init__(
        self,
        user_id: UUID | str,
        conversation_ids: Iterable[Any] = (),
        unread_ids: Iterable[Any] = (),
    ):
        self.user_id = _id(user_id)
        self._conversations = {_id(c) for c in conversation_ids}
        self._unread = {_id(m) for m in unread_ids}

    @property
    def count(self) -> int:
        return len(self._unread)

    @property
    def conversation_ids(self) -> frozenset[str]:
        return frozenset(self._conversations)

    def _is_incoming(self, record: dict[str, Any]) -> bool:
        return (
            _id(record.get("conversation_id")) in self._conversations
            and _id(record.get("sender_id")) != self.user_id
        )

    def apply(self, event: ChangeEvent) -> bool:
        before = self.count

        if event.table == "conversations":
            record = event.record
            if event.type == ChangeType.insert and self.user_id in (
                _id(record.get("user1_id")),
                _id(record.get("user2_id")),
            ):
                self._conversations.add(_id(record.get("id")))
            return False

        if event.table != "messages":
            return False

        if event.type == ChangeType.delete:
            self._unread.discard(event.row_id)
        elif event.type == ChangeType.insert:
            if self._is_incoming(event.record) and not event.record.get("is_read"):
                self._unread.add(event.row_id)
        elif event.type == ChangeType.update:
            if event.record.get("is_read"):
                self._unread.discard(event.row_id)
            elif self._is_incoming(event.record):
                self._unread.add(event.row_id)

        return self.count != before


class UnreadNotificationCounter:
    """Unread notifications for one user."""

    def __init__(self, user_id: UUID | str, unread_ids: Iterable[Any] = ()):
        self.user_id = _id(user_id)
        self._unread = {_id(n) for n in unread_ids}

    @property
    def count(self) -> int:
        return len(self._unread)

    def apply(self, event: ChangeEvent) -> bool:
        if event.table != "notifications":
            return False
        if _id(event.row.get("user_id")) != self.user_id:
            return False

        before = self.count
        if event.type == ChangeType.delete or event.record.get("is_read"):
            self._unread.discard(event.row_id)
        else:
            self._unread.add(event.row_id)
        return self.count != before


class CheckInTracker:
    """Whether one user has checked in today (UTC)."""

    def __init__(
        self,
        user_id: UUID | str,
        today_check_in: dict[str, Any] | None = None,
        today: Callable[[], date] = _utc_today,
    ):
        self.user_id = _id(user_id)
        self._today = today
        self._check_in_id: str | None = None
        self._date: str | None = None
        if today_check_in:
            self._track(today_check_in)

    @property
    def checked_in_today(self) -> bool:
        return self._date is not None and self._date == self._today().isoformat()

    @property
    def check_in_id(self) -> str | None:
        return self._check_in_id if self.checked_in_today else None

    def _track(self, record: dict[str, Any]) -> None:
        self._check_in_id = _id(record.get("id"))
        record_date = record.get("date")
        self._date = record_date.isoformat() if isinstance(record_date, date) else record_date

    def _clear(self) -> None:
        self._check_in_id = None
        self._date = None

    def apply(self, event: ChangeEvent) -> bool:
        if event.table != "daily_check_ins":
            return False
        if _id(event.row.get("user_id")) != self.user_id:
            return False

        before = self.checked_in_today
        if event.type == ChangeType.delete:
            if event.row_id is not None and event.row_id == self._check_in_id:
                self._clear()
        else:
            record_date = event.record.get("date")
            if isinstance(record_date, date):
                record_date = record_date.isoformat()
            if record_date == self._today().isoformat():
                self._track(event.record)
        return self.checked_in_today != before
