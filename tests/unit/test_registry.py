"""
Unit tests for the subscription registry.
"""

import pytest

from dbqueue.consumer import QueueConsumer, SubscriptionRegistry
from dbqueue.exceptions import DuplicateSubscriptionError, InvalidHandlerTypeError


async def noop_callback(message, consumer):
    return None


async def other_callback(message, consumer):
    return None


class RecordingHandler:
    """Object whose bound method is used as a callback."""

    def __init__(self):
        self.calls = []

    async def handle(self, message, consumer):
        self.calls.append(message)


class TestSubscriptionRegistry:
    """Tests for SubscriptionRegistry."""

    @pytest.fixture
    def registry(self) -> SubscriptionRegistry:
        """Create a fresh registry."""
        return SubscriptionRegistry()

    def test_new_registry_is_empty(self, registry: SubscriptionRegistry):
        """Test a new registry has no subscriptions."""
        assert registry.is_empty()
        assert len(registry) == 0
        assert registry.queue_names() == []

    def test_subscribe(self, registry: SubscriptionRegistry, orders_consumer: QueueConsumer):
        """Test subscribing registers the consumer's queue."""
        registry.subscribe(orders_consumer, noop_callback)

        assert not registry.is_empty()
        assert "orders" in registry
        subscription = registry.get("orders")
        assert subscription.consumer is orders_consumer
        assert subscription.callback is noop_callback
        assert subscription.queue_name == "orders"

    def test_subscribe_same_pair_is_idempotent(
        self,
        registry: SubscriptionRegistry,
        orders_consumer: QueueConsumer,
    ):
        """Test subscribing the identical pair twice changes nothing."""
        registry.subscribe(orders_consumer, noop_callback)
        registry.subscribe(orders_consumer, noop_callback)

        assert len(registry) == 1

    def test_subscribe_bound_method_twice_is_idempotent(
        self,
        registry: SubscriptionRegistry,
        orders_consumer: QueueConsumer,
    ):
        """Test bound methods compare equal across attribute lookups."""
        handler = RecordingHandler()

        registry.subscribe(orders_consumer, handler.handle)
        registry.subscribe(orders_consumer, handler.handle)

        assert len(registry) == 1

    def test_subscribe_different_callback_rejected(
        self,
        registry: SubscriptionRegistry,
        orders_consumer: QueueConsumer,
    ):
        """Test a different callback on a subscribed queue is rejected."""
        registry.subscribe(orders_consumer, noop_callback)

        with pytest.raises(DuplicateSubscriptionError) as exc_info:
            registry.subscribe(orders_consumer, other_callback)

        assert exc_info.value.queue_name == "orders"
        assert '"orders"' in str(exc_info.value)
        assert registry.get("orders").callback is noop_callback

    def test_subscribe_different_consumer_same_queue_rejected(
        self,
        registry: SubscriptionRegistry,
        orders_consumer: QueueConsumer,
    ):
        """Test a look-alike consumer for the same queue is a different subscriber."""
        registry.subscribe(orders_consumer, noop_callback)

        with pytest.raises(DuplicateSubscriptionError):
            registry.subscribe(QueueConsumer("orders"), noop_callback)

    def test_subscribe_invalid_handler_type(self, registry: SubscriptionRegistry):
        """Test subscribing something that is not a QueueConsumer."""
        with pytest.raises(InvalidHandlerTypeError) as exc_info:
            registry.subscribe("orders", noop_callback)

        assert isinstance(exc_info.value, TypeError)
        assert "QueueConsumer" in str(exc_info.value)
        assert registry.is_empty()

    def test_unsubscribe(self, registry: SubscriptionRegistry, orders_consumer: QueueConsumer):
        """Test unsubscribing the registered consumer removes it."""
        registry.subscribe(orders_consumer, noop_callback)

        registry.unsubscribe(orders_consumer)

        assert registry.is_empty()

    def test_unsubscribe_other_identity_is_noop(
        self,
        registry: SubscriptionRegistry,
        orders_consumer: QueueConsumer,
    ):
        """Test unsubscribing a different consumer object keeps the subscription."""
        registry.subscribe(orders_consumer, noop_callback)

        registry.unsubscribe(QueueConsumer("orders"))

        assert registry.get("orders").consumer is orders_consumer

    def test_unsubscribe_unknown_queue_is_noop(
        self,
        registry: SubscriptionRegistry,
        orders_consumer: QueueConsumer,
        emails_consumer: QueueConsumer,
    ):
        """Test unsubscribing a queue that was never subscribed."""
        registry.subscribe(orders_consumer, noop_callback)

        registry.unsubscribe(emails_consumer)

        assert registry.queue_names() == ["orders"]

    def test_unsubscribe_invalid_handler_type(self, registry: SubscriptionRegistry):
        """Test unsubscribing something that is not a QueueConsumer."""
        with pytest.raises(InvalidHandlerTypeError):
            registry.unsubscribe(object())

    def test_unsubscribe_all(
        self,
        registry: SubscriptionRegistry,
        orders_consumer: QueueConsumer,
        emails_consumer: QueueConsumer,
    ):
        """Test removing every subscription."""
        registry.subscribe(orders_consumer, noop_callback)
        registry.subscribe(emails_consumer, other_callback)

        registry.unsubscribe_all()

        assert registry.is_empty()
        # Safe on an empty registry too
        registry.unsubscribe_all()

    def test_snapshot_is_independent(
        self,
        registry: SubscriptionRegistry,
        orders_consumer: QueueConsumer,
        emails_consumer: QueueConsumer,
    ):
        """Test later changes do not leak into an earlier snapshot."""
        registry.subscribe(orders_consumer, noop_callback)
        snapshot = registry.snapshot()

        registry.subscribe(emails_consumer, noop_callback)
        registry.unsubscribe(orders_consumer)

        assert list(snapshot) == ["orders"]
        assert registry.queue_names() == ["emails"]


class TestQueueConsumer:
    """Tests for QueueConsumer construction."""

    def test_queue_name(self):
        """Test the consumer exposes its queue name."""
        assert QueueConsumer("orders").queue_name == "orders"

    def test_empty_queue_name_rejected(self):
        """Test a consumer needs a queue name."""
        with pytest.raises(ValueError):
            QueueConsumer("")

    async def test_acknowledge_foreign_message_rejected(self, make_message, orders_consumer):
        """Test a consumer only settles messages from its own queue."""
        message = make_message("emails")

        with pytest.raises(ValueError):
            await orders_consumer.acknowledge(message)

    async def test_reject_unclaimed_message_rejected(self, make_message, orders_consumer):
        """Test settling requires a claimed message."""
        message = make_message("orders", delivery_id=None)

        with pytest.raises(ValueError):
            await orders_consumer.reject(message)
