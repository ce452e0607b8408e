"""
Change broadcaster for the notification channel.

Keeps the set of live subscriptions and fans every accepted mutation's
events out to all of them.

Architecture:
    RewardsService → publish(events) → ChangeBroadcaster → subscriber queues → SSE streams

Delivery is best-effort: no retry, no replay, no buffering beyond each
subscriber's bounded queue.  A subscriber whose queue is full is treated
as dead and dropped, so one stalled client never holds up the others.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Iterable

from family_rewards.protocol.events import RewardsEvent

logger = logging.getLogger(__name__)


class Subscription:
    """One connected observer: an id, a bounded queue and a closed flag.

    A ``None`` item in the queue signals end-of-stream.
    """

    def __init__(self, maxsize: int) -> None:
        self.id = uuid.uuid4().hex
        self.queue: asyncio.Queue[RewardsEvent | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def push(self, event: RewardsEvent) -> bool:
        """Enqueue without waiting. Returns False if the subscriber cannot keep up."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        """Mark closed and wake the reader if there is room for the sentinel."""
        if self.closed:
            return
        self.closed = True
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass


class ChangeBroadcaster:
    """
    Manages the active notification subscriptions.

    Owned by the application (created in ``create_app``, closed on
    shutdown) rather than living as a module global.
    """

    def __init__(self, queue_size: int = 64) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[str, Subscription] = {}

    def subscribe(self) -> Subscription:
        """Register a new observer and return its subscription."""
        subscription = Subscription(maxsize=self._queue_size)
        self._subscribers[subscription.id] = subscription
        logger.info(
            f"🔌 Subscriber {subscription.id[:8]} joined ({len(self._subscribers)} active)"
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscription (client disconnected or stream finished)."""
        subscription.close()
        if self._subscribers.pop(subscription.id, None) is not None:
            logger.info(
                f"Subscriber {subscription.id[:8]} left ({len(self._subscribers)} active)"
            )

    async def publish(self, events: Iterable[RewardsEvent]) -> int:
        """
        Push ``events`` to every registered subscriber, in order.

        Subscribers whose push fails are dropped immediately.
        Returns the number of subscribers that received the whole batch.
        """
        batch = list(events)
        delivered = 0
        for subscription in list(self._subscribers.values()):
            if all(subscription.push(event) for event in batch):
                delivered += 1
                continue
            logger.warning(
                f"Dropping subscriber {subscription.id[:8]}: push failed (queue full or closed)"
            )
            self.unsubscribe(subscription)

        logger.debug(
            f"Published {[event.type for event in batch]} "
            f"to {delivered} subscriber(s)"
        )
        return delivered

    async def close(self) -> None:
        """Signal end-of-stream to every subscriber and forget them all."""
        for subscription in list(self._subscribers.values()):
            subscription.close()
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        """Number of currently registered subscribers."""
        return len(self._subscribers)

    def is_subscribed(self, subscription: Subscription) -> bool:
        return subscription.id in self._subscribers
