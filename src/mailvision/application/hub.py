"""Fan-out of completed image analyses to registered subscribers."""

from __future__ import annotations

import threading

from loguru import logger

from mailvision.application.ports.subscriber import Subscriber
from mailvision.domain.entities.image_analysis import ImageAnalysis


def subscriber_identity(subscriber: Subscriber) -> str:
    return subscriber.session_id or ""


class Subscription:
    """Handle returned by :meth:`PublishHub.subscribe`. Closing it unsubscribes."""

    def __init__(self, hub: "PublishHub", subscriber: Subscriber):
        self._hub = hub
        self._subscriber = subscriber

    def close(self) -> None:
        """Unsubscribe, unless a later subscriber with the same identity replaced this one."""
        self._hub.discard(self._subscriber)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class PublishHub:
    def __init__(self) -> None:
        self._subscribers: dict[str, Subscriber] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, subscriber: Subscriber) -> Subscription:
        """Register ``subscriber``; a later subscriber with the same identity replaces it."""
        identity = subscriber_identity(subscriber)
        with self._lock:
            replaced = identity in self._subscribers
            self._subscribers[identity] = subscriber

        if replaced:
            logger.warning(f"Subscriber {identity!r} replaced an existing subscription")
        else:
            logger.info(f"Subscribe {identity!r} successfully")
        return Subscription(self, subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> bool:
        identity = subscriber_identity(subscriber)
        with self._lock:
            removed = self._subscribers.pop(identity, None)

        if removed is None:
            logger.warning(f"Failed to unsubscribe {identity!r}: not subscribed")
            return False
        logger.info(f"Unsubscribe {identity!r} successfully")
        return True

    def discard(self, subscriber: Subscriber) -> bool:
        """Remove ``subscriber`` only while it is the one registered under its identity."""
        identity = subscriber_identity(subscriber)
        with self._lock:
            current = self._subscribers.get(identity)
            if current is not subscriber:
                return False
            del self._subscribers[identity]

        logger.info(f"Unsubscribe {identity!r} successfully")
        return True

    def publish(self, analysis: ImageAnalysis) -> int:
        """Deliver to every current subscriber. Returns the number of successful deliveries."""
        with self._lock:
            subscribers = list(self._subscribers.items())

        delivered = 0
        for identity, subscriber in subscribers:
            try:
                subscriber.on_next(analysis)
                delivered += 1
            except Exception as e:
                logger.error(f"Subscriber {identity!r} failed to handle image {analysis.record.id}: {e}")
        return delivered
