"""In-process publish/subscribe transport keyed by site id.

Publishers run on worker threads while WebSocket subscribers live on the
event loop, so delivery hops threads through ``call_soon_threadsafe``.
Delivery is at-most-once: a subscriber that is gone, or whose buffer is
full, simply misses the message.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from threading import Lock
from typing import Any, Protocol

from backend.domain.errors import DependencyFailureError
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class SubscriberGoneError(Exception):
    """Raised by a subscriber that can no longer receive messages."""


class Subscriber(Protocol):
    def deliver(self, message: dict[str, Any]) -> None:
        ...


class QueueSubscriber:
    """Buffers messages for a single connection on its event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, max_buffer: int = 100) -> None:
        self._loop = loop
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max_buffer)

    def deliver(self, message: dict[str, Any]) -> None:
        if self._loop.is_closed():
            raise SubscriberGoneError("subscriber event loop is closed")
        try:
            self._loop.call_soon_threadsafe(self._offer, message)
        except RuntimeError as exc:
            raise SubscriberGoneError(str(exc)) from exc

    def _offer(self, message: dict[str, Any]) -> None:
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Subscriber buffer full; dropping message for site %s", message.get("site_id"))

    async def next_message(self) -> dict[str, Any]:
        return await self._queue.get()


class SubscriptionHub:
    """Topic registry with an explicit open/close lifecycle owned by the app."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._topics: dict[int, set[Subscriber]] = defaultdict(set)
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        with self._lock:
            self._open = True
        logger.info("Subscription hub opened")

    def close(self) -> None:
        with self._lock:
            self._open = False
            self._topics.clear()
        logger.info("Subscription hub closed")

    def subscribe(self, topic: int, subscriber: Subscriber) -> None:
        with self._lock:
            if not self._open:
                raise DependencyFailureError("Subscription hub is not open")
            self._topics[topic].add(subscriber)

    def unsubscribe(self, topic: int, subscriber: Subscriber) -> None:
        with self._lock:
            members = self._topics.get(topic)
            if members is None:
                return
            members.discard(subscriber)
            if not members:
                del self._topics[topic]

    def unsubscribe_all(self, subscriber: Subscriber) -> None:
        with self._lock:
            for topic in list(self._topics):
                self._topics[topic].discard(subscriber)
                if not self._topics[topic]:
                    del self._topics[topic]

    def subscriber_count(self, topic: int) -> int:
        with self._lock:
            return len(self._topics.get(topic, ()))

    def send(self, topic: int, message: dict[str, Any]) -> int:
        """Deliver to current subscribers of ``topic``; returns how many accepted it."""
        with self._lock:
            if not self._open:
                raise DependencyFailureError("Subscription hub is not open")
            members = list(self._topics.get(topic, ()))

        delivered = 0
        for subscriber in members:
            try:
                subscriber.deliver(message)
                delivered += 1
            except SubscriberGoneError:
                logger.info("Dropping disconnected subscriber from site %s", topic)
                self.unsubscribe(topic, subscriber)
        return delivered
