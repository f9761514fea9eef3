"""
Database-backed Message Queue

A message consumption engine that uses an ordinary relational table as the
durable queue store, with claim/redelivery semantics and fair polling across
subscribed queues.
"""

__version__ = "1.0.0"

from dbqueue.constants import ConsumeResult  # noqa: E402
from dbqueue.consumer import (  # noqa: E402
    QueueConsumer,
    SubscriptionConsumer,
    SubscriptionRegistry,
)
from dbqueue.exceptions import (  # noqa: E402
    DuplicateSubscriptionError,
    InvalidHandlerTypeError,
    NoSubscribersError,
    QueueError,
    StorageLayerError,
)
from dbqueue.types import Message  # noqa: E402

__all__ = [
    "ConsumeResult",
    "Message",
    "QueueConsumer",
    "SubscriptionConsumer",
    "SubscriptionRegistry",
    "QueueError",
    "NoSubscribersError",
    "DuplicateSubscriptionError",
    "InvalidHandlerTypeError",
    "StorageLayerError",
]
