"""
Consumer module.
Contains the queue consumer handle, the subscription registry and the
polling subscription consumer.
"""

from dbqueue.consumer.queue_consumer import QueueConsumer
from dbqueue.consumer.registry import Subscription, SubscriptionRegistry
from dbqueue.consumer.subscription import SubscriptionConsumer

__all__ = [
    "QueueConsumer",
    "Subscription",
    "SubscriptionRegistry",
    "SubscriptionConsumer",
]
