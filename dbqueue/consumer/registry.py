"""
Subscription registry.

Maps each queue name to exactly one (consumer, callback) pair.
"""

import logging
import threading
from dataclasses import dataclass

from dbqueue.consumer.queue_consumer import QueueConsumer
from dbqueue.exceptions import DuplicateSubscriptionError, InvalidHandlerTypeError
from dbqueue.types.message import MessageCallback

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Subscription:
    """A consumer and the callback that handles its messages."""

    consumer: QueueConsumer
    callback: MessageCallback

    @property
    def queue_name(self) -> str:
        return self.consumer.queue_name

    def matches(self, consumer: QueueConsumer, callback: MessageCallback) -> bool:
        """Same consumer object and an equal callback."""
        return self.consumer is consumer and self.callback == callback


def _ensure_consumer(consumer: object) -> QueueConsumer:
    if not isinstance(consumer, QueueConsumer):
        raise InvalidHandlerTypeError(QueueConsumer, consumer)
    return consumer


class SubscriptionRegistry:
    """
    At most one subscription per queue name.

    Consumers are compared by identity: two consumers for the same queue
    are different subscribers even if they look alike. Mutations are
    guarded by a lock so the registry can be changed from another thread
    while a consume loop runs on its own snapshot.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def subscribe(self, consumer: QueueConsumer, callback: MessageCallback) -> None:
        """
        Register a callback for the consumer's queue.

        Re-subscribing the identical pair is a no-op.

        Raises:
            InvalidHandlerTypeError: If consumer is not a QueueConsumer.
            DuplicateSubscriptionError: If the queue has another subscriber.
        """
        consumer = _ensure_consumer(consumer)
        queue_name = consumer.queue_name

        with self._lock:
            existing = self._subscriptions.get(queue_name)
            if existing is not None:
                if existing.matches(consumer, callback):
                    return
                raise DuplicateSubscriptionError(queue_name)

            self._subscriptions[queue_name] = Subscription(consumer, callback)

        logger.debug("Subscribed", extra={"queue": queue_name})

    def unsubscribe(self, consumer: QueueConsumer) -> None:
        """
        Remove the consumer's subscription.

        Does nothing when the queue is not subscribed or is subscribed by a
        different consumer object.

        Raises:
            InvalidHandlerTypeError: If consumer is not a QueueConsumer.
        """
        consumer = _ensure_consumer(consumer)
        queue_name = consumer.queue_name

        with self._lock:
            existing = self._subscriptions.get(queue_name)
            if existing is None or existing.consumer is not consumer:
                return
            del self._subscriptions[queue_name]

        logger.debug("Unsubscribed", extra={"queue": queue_name})

    def unsubscribe_all(self) -> None:
        """Remove every subscription."""
        with self._lock:
            self._subscriptions.clear()

    def is_empty(self) -> bool:
        return not self._subscriptions

    def get(self, queue_name: str) -> Subscription | None:
        return self._subscriptions.get(queue_name)

    def queue_names(self) -> list[str]:
        with self._lock:
            return list(self._subscriptions)

    def snapshot(self) -> dict[str, Subscription]:
        """Copy of the current subscriptions, keyed by queue name."""
        with self._lock:
            return dict(self._subscriptions)

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, queue_name: object) -> bool:
        return queue_name in self._subscriptions
