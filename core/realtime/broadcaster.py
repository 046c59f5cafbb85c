"""In-process broadcast of check-in state to every open surface of a user."""

import asyncio
import logging
from typing import Any
from uuid import UUID

logger = logging.getLogger(__name__)


class CheckInBroadcaster:
    """
    Per-user fan-out of check-in transitions.

    Independent of the change feed: a check-in made through this process
    reaches the user's other sessions immediately, and the later database
    echo is a no-op for their trackers.
    """

    def __init__(self):
        self._subscribers: dict[str, set[asyncio.Queue]] = {}

    def subscriber_count(self, user_id: UUID | str | None = None) -> int:
        if user_id is None:
            return sum(len(queues) for queues in self._subscribers.values())
        return len(self._subscribers.get(str(user_id), ()))

    def subscribe(self, user_id: UUID | str) -> asyncio.Queue:
        """Add a subscriber for a user."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        self._subscribers.setdefault(str(user_id), set()).add(queue)
        return queue

    def unsubscribe(self, user_id: UUID | str, queue: asyncio.Queue) -> None:
        """Remove a subscriber."""
        queues = self._subscribers.get(str(user_id))
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            self._subscribers.pop(str(user_id), None)

    def publish(self, user_id: UUID | str, message: dict[str, Any]) -> None:
        """Push a message to all of a user's subscribers."""
        queues = self._subscribers.get(str(user_id))
        if not queues:
            return
        dead_queues = []
        for queue in queues:
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                dead_queues.append(queue)
        for q in dead_queues:
            logger.warning(f"Dropping stalled check-in subscriber for user {user_id}")
            queues.discard(q)


# Singleton
checkin_broadcaster = CheckInBroadcaster()
