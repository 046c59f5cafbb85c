"""
One user's realtime session: counters, check-in flag and role, kept in sync
from the change feed, the in-process check-in broadcaster and a role poll.

The web layer owns one RealtimeSession per open stream and reads outgoing
messages from session.queue.

Outgoing messages:
    {"type": "snapshot", "unread_messages": n, "unread_notifications": n,
     "checked_in_today": bool, "check_in_id": str | None, "role": str}
    {"type": "unread_messages", "count": n}
    {"type": "unread_notifications", "count": n}
    {"type": "check_in", "checked_in_today": bool, "check_in_id": str | None}
    {"type": "role", "role": str, "banned_until": str | None}
    {"type": "signed_out"}
"""

import asyncio
import logging
from typing import Any
from uuid import UUID

import sentry_sdk

from core.config import get_role_poll_interval
from core.database import get_transaction
from core.errors import NotAuthenticatedError
from core.checkins import get_today_check_in
from core.messages import (
    get_conversation_ids,
    get_unread_message_ids,
    get_unread_notification_ids,
)
from core.roles import RoleInfo, resolve_role

from .broadcaster import CheckInBroadcaster, checkin_broadcaster
from .counters import CheckInTracker, UnreadMessageCounter, UnreadNotificationCounter
from .events import ChangeEvent, local_insert
from .feed import ChangeFeed, change_feed

logger = logging.getLogger(__name__)


class RealtimeSession:
    def __init__(
        self,
        user_id: UUID,
        feed: ChangeFeed | None = None,
        broadcaster: CheckInBroadcaster | None = None,
        role_poll_interval: float | None = None,
    ):
        self.user_id = user_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        self._feed = feed or change_feed
        self._broadcaster = broadcaster or checkin_broadcaster
        self._role_poll_interval = (
            role_poll_interval if role_poll_interval is not None else get_role_poll_interval()
        )

        self.messages: UnreadMessageCounter | None = None
        self.notifications: UnreadNotificationCounter | None = None
        self.check_in: CheckInTracker | None = None
        self.role: RoleInfo | None = None

        self._unsubscribers: list = []
        self._checkin_queue: asyncio.Queue | None = None
        self._tasks: list[asyncio.Task] = []
        self._closed = False

    @property
    def active(self) -> bool:
        return bool(self._unsubscribers) and not self._closed

    async def start(self) -> None:
        """
        Load initial state, subscribe to every source and start the role poll.

        Raises:
            NotAuthenticatedError: The user has no profile
        """
        self._closed = False
        await self._load()
        self._subscribe()
        self._emit(self.snapshot())
        logger.info(f"Realtime session started for user {self.user_id}")

    async def switch_user(self, user_id: UUID) -> None:
        """Tear down every subscription and start over under a new identity."""
        self._teardown()
        self.user_id = user_id
        await self.start()

    async def close(self) -> None:
        """Stop receiving updates. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        tasks = self._teardown()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info(f"Realtime session closed for user {self.user_id}")

    def snapshot(self) -> dict[str, Any]:
        return {
            "type": "snapshot",
            "unread_messages": self.messages.count if self.messages else 0,
            "unread_notifications": self.notifications.count if self.notifications else 0,
            "checked_in_today": self.check_in.checked_in_today if self.check_in else False,
            "check_in_id": self.check_in.check_in_id if self.check_in else None,
            "role": self.role.role.value if self.role else None,
        }

    # ------------------------------------------------------------------
    # Setup / teardown
    # ------------------------------------------------------------------

    async def _load(self) -> None:
        async with get_transaction() as conn:
            self.role = await resolve_role(conn, self.user_id)
            conversation_ids = await get_conversation_ids(conn, self.user_id)
            unread_messages = await get_unread_message_ids(conn, self.user_id, conversation_ids)
            unread_notifications = await get_unread_notification_ids(conn, self.user_id)
            today_check_in = await get_today_check_in(conn, self.user_id)

        self.messages = UnreadMessageCounter(self.user_id, conversation_ids, unread_messages)
        self.notifications = UnreadNotificationCounter(self.user_id, unread_notifications)
        self.check_in = CheckInTracker(self.user_id, today_check_in)

    def _subscribe(self) -> None:
        user_id = str(self.user_id)
        self._unsubscribers = [
            self._feed.subscribe("messages", self._on_message_change),
            self._feed.subscribe("conversations", self._on_message_change),
            self._feed.subscribe(
                "notifications",
                self._on_notification_change,
                predicate=lambda e: str(e.row.get("user_id")) == user_id,
            ),
            self._feed.subscribe(
                "daily_check_ins",
                self._on_check_in_change,
                predicate=lambda e: str(e.row.get("user_id")) == user_id,
            ),
        ]
        self._checkin_queue = self._broadcaster.subscribe(self.user_id)
        self._tasks = [
            asyncio.create_task(self._forward_check_ins(self._checkin_queue)),
            asyncio.create_task(self._poll_role()),
        ]

    def _teardown(self) -> list[asyncio.Task]:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        if self._checkin_queue is not None:
            self._broadcaster.unsubscribe(self.user_id, self._checkin_queue)
            self._checkin_queue = None
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        return tasks

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _emit(self, message: dict[str, Any]) -> None:
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"Realtime queue full for user {self.user_id}, dropping {message['type']}")

    def _on_message_change(self, event: ChangeEvent) -> None:
        if self.messages.apply(event):
            self._emit({"type": "unread_messages", "count": self.messages.count})

    def _on_notification_change(self, event: ChangeEvent) -> None:
        if self.notifications.apply(event):
            self._emit({"type": "unread_notifications", "count": self.notifications.count})

    def _on_check_in_change(self, event: ChangeEvent) -> None:
        if self.check_in.apply(event):
            self._emit(
                {
                    "type": "check_in",
                    "checked_in_today": self.check_in.checked_in_today,
                    "check_in_id": self.check_in.check_in_id,
                }
            )

    async def _forward_check_ins(self, queue: asyncio.Queue) -> None:
        """Apply check-ins made by this process as soon as they are written."""
        while True:
            try:
                message = await queue.get()
            except asyncio.CancelledError:
                break
            record = message.get("record")
            if record:
                self._on_check_in_change(local_insert("daily_check_ins", record))

    async def _poll_role(self) -> None:
        """
        Re-resolve the user's role on an interval.

        Runs regardless of the change feed, so a ban or role change is seen
        within one interval even when push notifications are not arriving.
        """
        while True:
            try:
                await asyncio.sleep(self._role_poll_interval)
            except asyncio.CancelledError:
                break

            try:
                async with get_transaction() as conn:
                    role_info = await resolve_role(conn, self.user_id)
            except asyncio.CancelledError:
                break
            except NotAuthenticatedError:
                logger.info(f"Profile for user {self.user_id} is gone, ending session")
                self._emit({"type": "signed_out"})
                break
            except Exception as e:
                logger.error(f"Role poll error for user {self.user_id}: {e}")
                sentry_sdk.capture_exception(e)
                continue

            previous = self.role
            self.role = role_info
            if previous is None or (previous.role, previous.banned_until) != (
                role_info.role,
                role_info.banned_until,
            ):
                self._emit({"type": "role", **role_info.to_dict()})
