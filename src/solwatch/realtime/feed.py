"""In-process change feed: per-user, per-table subscriptions over asyncio queues.

Stands in for the managed database's realtime transport. Publishers push
ChangeEvents; each subscription receives the events of its user for the
tables it watches, in publish order.
"""

import asyncio
from collections.abc import Iterable

from solwatch.logging import get_logger
from solwatch.realtime.events import ChangeEvent

logger = get_logger(__name__)


class Subscription:
    """Async iterator over the events matching one (user, tables) filter."""

    def __init__(self, feed: "ChangeFeed", user_id: str, tables: Iterable[str]) -> None:
        self._feed = feed
        self.user_id = user_id
        self.tables = frozenset(tables)
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self.closed = False

    def matches(self, event: ChangeEvent) -> bool:
        return event.user_id == self.user_id and event.table in self.tables

    def deliver(self, event: ChangeEvent) -> None:
        self._queue.put_nowait(event)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self.closed = True
        self._feed.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        return await self._queue.get()


class ChangeFeed:
    """Fan-out of change events to matching subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def subscribe(self, user_id: str, tables: Iterable[str]) -> Subscription:
        subscription = Subscription(self, user_id, tables)
        self._subscriptions.append(subscription)
        logger.info(
            "change_feed_subscribed",
            user_id=user_id,
            tables=sorted(subscription.tables),
            total=len(self._subscriptions),
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        logger.info("change_feed_unsubscribed", user_id=subscription.user_id)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event`` to every matching subscription; returns the count."""
        delivered = 0
        for subscription in self._subscriptions:
            if subscription.matches(event):
                subscription.deliver(event)
                delivered += 1
        logger.debug(
            "change_event_published",
            table=event.table,
            event_type=event.event_type.value,
            delivered=delivered,
        )
        return delivered
