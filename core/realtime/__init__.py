"""Realtime synchronization of unread counters, check-in state and role."""

from .broadcaster import CheckInBroadcaster, checkin_broadcaster
from .counters import CheckInTracker, UnreadMessageCounter, UnreadNotificationCounter
from .events import ChangeEvent, parse_change_payload
from .feed import ChangeFeed, PostgresChangeListener, change_feed
from .session import RealtimeSession

__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "CheckInBroadcaster",
    "CheckInTracker",
    "PostgresChangeListener",
    "RealtimeSession",
    "UnreadMessageCounter",
    "UnreadNotificationCounter",
    "change_feed",
    "checkin_broadcaster",
    "parse_change_payload",
]
