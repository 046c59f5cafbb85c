"""
In-process change feed and the PostgreSQL LISTEN connection that fills it.

Database triggers call pg_notify() for every row change on the realtime
tables. PostgresChangeListener holds one dedicated asyncpg connection
LISTENing on that channel and publishes each parsed event into the
ChangeFeed, which fans it out to per-session subscriptions.
"""

import asyncio
import logging
from collections.abc import Callable
from itertools import count

import asyncpg
import sentry_sdk

from core.config import get_realtime_channel
from core.database import get_listen_dsn

from .events import ChangeEvent, parse_change_payload

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]
ChangePredicate = Callable[[ChangeEvent], bool]


class ChangeFeed:
    """Table-keyed publish/subscribe for row change events."""

    def __init__(self):
        self._subscriptions: dict[str, dict[int, tuple[ChangeCallback, ChangePredicate | None]]] = {}
        self._ids = count(1)

    @property
    def subscription_count(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values())

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        predicate: ChangePredicate | None = None,
    ) -> Callable[[], None]:
        """
        Register a callback for changes on a table.

        Args:
            table: Table name
            callback: Called with each matching ChangeEvent
            predicate: Optional filter; the callback only sees events it accepts

        Returns:
            An unsubscribe function. Calling it more than once is harmless.
        """
        sub_id = next(self._ids)
        self._subscriptions.setdefault(table, {})[sub_id] = (callback, predicate)

        def unsubscribe() -> None:
            subs = self._subscriptions.get(table)
            if subs is not None:
                subs.pop(sub_id, None)
                if not subs:
                    self._subscriptions.pop(table, None)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> int:
        """
        Deliver an event to every matching subscriber.

        A failing subscriber is logged and skipped; the others still receive
        the event. Returns the number of callbacks invoked.
        """
        delivered = 0
        for callback, predicate in list(self._subscriptions.get(event.table, {}).values()):
            try:
                if predicate is not None and not predicate(event):
                    continue
                callback(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Change subscriber failed on {event.table} {event.type.value}: {e}")
                sentry_sdk.capture_exception(e)
        return delivered


class PostgresChangeListener:
    """Dedicated LISTEN connection feeding a ChangeFeed."""

    def __init__(
        self,
        feed: ChangeFeed,
        channel: str | None = None,
        reconnect_delay: float = 5.0,
    ):
        self._feed = feed
        self._channel = channel or get_realtime_channel()
        self._reconnect_delay = reconnect_delay
        self._task: asyncio.Task | None = None
        self._wake = asyncio.Event()
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start listening in the background if not already running."""
        if self.running:
            return
        self._stopping = False
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Realtime listener starting on channel '{self._channel}'")

    async def stop(self) -> None:
        """Stop listening and close the connection."""
        self._stopping = True
        self._wake.set()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Realtime listener stopped")

    def _on_notify(self, connection, pid, channel, payload) -> None:
        event = parse_change_payload(payload)
        if event is not None:
            self._feed.publish(event)

    def _on_terminate(self, connection) -> None:
        logger.warning("Realtime listener connection lost")
        self._wake.set()

    async def _run(self) -> None:
        while not self._stopping:
            conn = None
            try:
                conn = await asyncpg.connect(get_listen_dsn())
                conn.add_termination_listener(self._on_terminate)
                await conn.add_listener(self._channel, self._on_notify)
                logger.info(f"Listening for changes on '{self._channel}'")

                await self._wake.wait()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Realtime listener error: {e}")
                sentry_sdk.capture_exception(e)
            finally:
                if conn is not None and not conn.is_closed():
                    await conn.close()

            if self._stopping:
                break
            self._wake.clear()
            try:
                await asyncio.sleep(self._reconnect_delay)
            except asyncio.CancelledError:
                break


# Singleton
change_feed = ChangeFeed()
