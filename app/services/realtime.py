"""
Frinder Ledger — In-process real-time subscriptions.

Readers subscribe to a topic and receive every snapshot published to it, in
publish order, through their own ``asyncio.Queue``.  Topics:

* ``match:{match_id}``        — message events of one conversation
* ``user:{user_id}:matches``  — match list changes for one user

Every :class:`Subscription` must be released with ``unsubscribe()`` when the
reader goes away; the WebSocket route does this in ``finally``.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

logger = structlog.get_logger("frinder.realtime")

DEFAULT_QUEUE_SIZE = 100


def match_topic(match_id: str) -> str:
    return f"match:{match_id}"


def user_matches_topic(user_id: str) -> str:
    return f"user:{user_id}:matches"


class Subscription:
    """One reader's handle on a topic."""

    def __init__(self, hub: "RealtimeHub", topic: str, maxsize: int) -> None:
        self.hub = hub
        self.topic = topic
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def deliver(self, payload: dict[str, Any]) -> None:
        # A slow reader loses its oldest snapshot, never the newest.
        if self.queue.full():
            self.queue.get_nowait()
            logger.warning("realtime_snapshot_dropped", topic=self.topic)
        self.queue.put_nowait(payload)

    async def get(self) -> dict[str, Any]:
        return await self.queue.get()

    def unsubscribe(self) -> None:
        if not self.closed:
            self.closed = True
            self.hub.remove(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self.closed:
            raise StopAsyncIteration
        return await self.queue.get()


class RealtimeHub:
    """Topic → subscriptions registry."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.queue_size = queue_size
        self._topics: dict[str, list[Subscription]] = {}

    def subscribe(self, topic: str) -> Subscription:
        subscription = Subscription(self, topic, self.queue_size)
        self._topics.setdefault(topic, []).append(subscription)
        logger.info("realtime_subscribed", topic=topic, readers=len(self._topics[topic]))
        return subscription

    def remove(self, subscription: Subscription) -> None:
        readers = self._topics.get(subscription.topic)
        if readers is None:
            return
        if subscription in readers:
            readers.remove(subscription)
        if not readers:
            del self._topics[subscription.topic]
        logger.info("realtime_unsubscribed", topic=subscription.topic)

    def publish(self, topic: str, payload: dict[str, Any]) -> int:
        """Deliver ``payload`` to every current reader; return the reader count."""
        readers = list(self._topics.get(topic, ()))
        for subscription in readers:
            subscription.deliver(payload)
        return len(readers)

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))
