"""
Subscription consumer: the polling loop that serves several queues.

Each ``consume`` call is one delivery session. The session claims messages
one at a time under a single claim token, walks the subscribed queues in
fairness passes (a queue that yielded a message is not asked again until
every other queue has had its turn or has come up empty), and backs off
briefly when a whole pass finds nothing.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Collection
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError

from dbqueue.config import get_settings
from dbqueue.constants import ConsumeResult, SPAN_CLAIM_MESSAGE, SPAN_DISPATCH_MESSAGE
from dbqueue.consumer.queue_consumer import QueueConsumer
from dbqueue.consumer.registry import Subscription, SubscriptionRegistry
from dbqueue.db.connection import get_session_context
from dbqueue.db.repository import MessageRepository
from dbqueue.exceptions import NoSubscribersError, StorageLayerError
from dbqueue.observability.logging import bind_context, unbind_context
from dbqueue.observability.metrics import MetricsCollector, get_metrics
from dbqueue.observability.tracing import get_tracer
from dbqueue.types.message import Message, MessageCallback

logger = logging.getLogger(__name__)


class SubscriptionConsumer:
    """
    Consumes messages for every subscribed queue from one polling loop.

    Features:
    - Atomic claims, so concurrent consumers never process the same message
    - Round-robin fairness across subscribed queues
    - Redelivery of messages whose claim expired (crashed or hung consumer)
    - Cooperative stop via callback result, timeout, or ``stop()``
    """

    def __init__(
        self,
        registry: SubscriptionRegistry | None = None,
        redelivery_delay_ms: int | None = None,
        idle_backoff_ms: int | None = None,
        claim_attempts: int | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the subscription consumer.

        Args:
            registry: Subscription registry; a fresh one by default.
            redelivery_delay_ms: How long a claim holds before the message
                can be claimed again.
            idle_backoff_ms: Pause after a pass that found no message.
            claim_attempts: Candidates tried per claim when racing others.
            metrics: Metrics collector; the global one by default.
        """
        settings = get_settings()

        self._registry = registry if registry is not None else SubscriptionRegistry()
        self.redelivery_delay_ms = (
            settings.queue_redelivery_delay_ms
            if redelivery_delay_ms is None
            else redelivery_delay_ms
        )
        self.idle_backoff_ms = (
            settings.queue_idle_backoff_ms
            if idle_backoff_ms is None
            else idle_backoff_ms
        )
        if claim_attempts is None:
            claim_attempts = settings.queue_claim_attempts
        if claim_attempts < 1:
            raise ValueError("Claim attempts must be >= 1")
        self._claim_attempts = claim_attempts
        self._metrics = metrics or get_metrics()
        self._stop_requested = False

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def redelivery_delay_ms(self) -> int:
        """Milliseconds after which an unacknowledged claim expires."""
        return self._redelivery_delay_ms

    @redelivery_delay_ms.setter
    def redelivery_delay_ms(self, value: int) -> None:
        if value < 0:
            raise ValueError("Redelivery delay must be >= 0")
        self._redelivery_delay_ms = value

    @property
    def idle_backoff_ms(self) -> int:
        return self._idle_backoff_ms

    @idle_backoff_ms.setter
    def idle_backoff_ms(self, value: int) -> None:
        if value < 0:
            raise ValueError("Idle backoff must be >= 0")
        self._idle_backoff_ms = value

    def get_redelivery_delay(self) -> int:
        return self.redelivery_delay_ms

    def set_redelivery_delay(self, redelivery_delay_ms: int) -> None:
        self.redelivery_delay_ms = redelivery_delay_ms

    def subscribe(self, consumer: QueueConsumer, callback: MessageCallback) -> None:
        """Register a callback for the consumer's queue."""
        self._registry.subscribe(consumer, callback)

    def unsubscribe(self, consumer: QueueConsumer) -> None:
        """Remove the consumer's subscription if it is the registered one."""
        self._registry.unsubscribe(consumer)

    def unsubscribe_all(self) -> None:
        """Remove every subscription."""
        self._registry.unsubscribe_all()

    def stop(self) -> None:
        """
        Ask ``consume`` to return after its current iteration.

        A request made before ``consume`` starts ends the next call after
        its first iteration. The request is cleared when ``consume`` returns.
        """
        self._stop_requested = True

    async def consume(self, timeout_ms: int = 0) -> None:
        """
        Poll subscribed queues and dispatch messages to their callbacks.

        Returns when a callback returns ``ConsumeResult.STOP``, when the
        timeout elapses, or after ``stop()`` is called. A timeout of 0 means
        no deadline.

        Args:
            timeout_ms: Deadline in milliseconds, 0 for none.

        Raises:
            NoSubscribersError: If nothing is subscribed.
            StorageLayerError: If claiming or fetching a message fails.
        """
        if self._registry.is_empty():
            raise NoSubscribersError()
        if timeout_ms < 0:
            raise ValueError("Timeout must be >= 0")

        deadline = time.monotonic() + timeout_ms / 1000 if timeout_ms else None
        delivery_id = uuid4()
        subscriptions = self._registry.snapshot()
        queue_names = list(subscriptions)

        bind_context(delivery_id=str(delivery_id))
        logger.info(
            "Consumption started",
            extra={"queues": queue_names, "timeout_ms": timeout_ms}
        )

        try:
            await self._poll(subscriptions, queue_names, delivery_id, deadline)
        finally:
            self._stop_requested = False
            logger.info("Consumption finished")
            unbind_context("delivery_id")

    async def _poll(
        self,
        subscriptions: dict[str, Subscription],
        queue_names: list[str],
        delivery_id: UUID,
        deadline: float | None,
    ) -> None:
        current_queue_names: list[str] = []

        while True:
            if not current_queue_names:
                # New fairness pass
                current_queue_names = list(queue_names)

            message = await self._claim(current_queue_names, delivery_id)

            if message is not None:
                subscription = subscriptions[message.queue]
                result = await self._dispatch(subscription, message)

                if result == ConsumeResult.STOP:
                    logger.info(
                        "Consumption stopped by callback",
                        extra={"queue": message.queue, "message_id": str(message.id)}
                    )
                    return

                current_queue_names.remove(message.queue)
            else:
                current_queue_names = []
                self._metrics.record_idle_poll()

                await asyncio.sleep(self.idle_backoff_ms / 1000)

            if deadline is not None and time.monotonic() >= deadline:
                return

            if self._stop_requested:
                logger.info("Consumption stop requested")
                return

    async def _claim(
        self,
        queue_names: Collection[str],
        delivery_id: UUID,
    ) -> Message | None:
        """
        Claim one message and materialize it.

        Claim and fetch share one transaction: the claim touches only what
        it needs to win the row, the full row is read under the claim.
        """
        with get_tracer().start_as_current_span(SPAN_CLAIM_MESSAGE) as span:
            span.set_attribute("delivery_id", str(delivery_id))
            try:
                async with get_session_context() as session:
                    repo = MessageRepository(
                        session,
                        claim_attempts=self._claim_attempts,
                        metrics=self._metrics,
                    )

                    message_id = await repo.claim_next(
                        queue_names,
                        delivery_id,
                        self.redelivery_delay_ms,
                    )
                    if message_id is None:
                        return None

                    row = await repo.get_message_by_delivery_id(delivery_id, message_id)
                    if row is None:
                        raise StorageLayerError(
                            f"Claimed message {message_id} not found by delivery id"
                        )
                    message = Message.from_row(row)
            except SQLAlchemyError as e:
                raise StorageLayerError(f"Failed to claim message: {e}") from e

            span.set_attribute("message_id", str(message.id))
            span.set_attribute("queue", message.queue)

        self._metrics.record_message_claimed(message.queue, message.redelivered)
        logger.debug(
            "Message claimed",
            extra={
                "message_id": str(message.id),
                "queue": message.queue,
                "redelivered": message.redelivered,
            }
        )
        return message

    async def _dispatch(self, subscription: Subscription, message: Message) -> ConsumeResult:
        """Invoke the subscription callback and normalize its result."""
        start_time = time.perf_counter()

        with get_tracer().start_as_current_span(SPAN_DISPATCH_MESSAGE) as span:
            span.set_attribute("message_id", str(message.id))
            span.set_attribute("queue", message.queue)
            span.set_attribute("redelivered", message.redelivered)

            try:
                outcome = subscription.callback(message, subscription.consumer)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            except Exception:
                self._metrics.record_callback(
                    message.queue, "error", time.perf_counter() - start_time
                )
                logger.exception(
                    "Callback raised",
                    extra={"message_id": str(message.id), "queue": message.queue}
                )
                raise

        result = ConsumeResult.STOP if outcome == ConsumeResult.STOP else ConsumeResult.CONTINUE
        self._metrics.record_callback(
            message.queue, result.value, time.perf_counter() - start_time
        )
        return result
