"""
Queue-bound consumer handle.

A QueueConsumer names the queue a subscription listens to and is handed to
the callback together with each message, so the callback can acknowledge or
reject what it received.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from dbqueue.constants import SPAN_ACK_MESSAGE, SPAN_REJECT_MESSAGE
from dbqueue.db.connection import get_session_context
from dbqueue.db.repository import MessageRepository
from dbqueue.exceptions import StorageLayerError
from dbqueue.observability.tracing import get_tracer
from dbqueue.types.message import Message

logger = logging.getLogger(__name__)


class QueueConsumer:
    """Consumer for a single named queue."""

    def __init__(self, queue_name: str):
        if not queue_name:
            raise ValueError("Queue name must not be empty")
        self._queue_name = queue_name

    @property
    def queue_name(self) -> str:
        return self._queue_name

    def _check_message(self, message: Message) -> None:
        if message.queue != self._queue_name:
            raise ValueError(
                f'Message from queue "{message.queue}" cannot be settled '
                f'by consumer of "{self._queue_name}"'
            )
        if message.delivery_id is None:
            raise ValueError("Message has not been claimed")

    async def acknowledge(self, message: Message) -> bool:
        """
        Remove a processed message from the queue.

        Args:
            message: A message delivered to this consumer.

        Returns:
            True if removed, False if the claim had already expired and
            another consumer took the message over.
        """
        self._check_message(message)

        with get_tracer().start_as_current_span(SPAN_ACK_MESSAGE) as span:
            span.set_attribute("message_id", str(message.id))
            span.set_attribute("queue", self._queue_name)
            try:
                async with get_session_context() as session:
                    repo = MessageRepository(session)
                    acknowledged = await repo.acknowledge(message.id, message.delivery_id)
            except SQLAlchemyError as e:
                raise StorageLayerError(f"Failed to acknowledge message {message.id}") from e

        if not acknowledged:
            logger.warning(
                "Acknowledge ignored, claim no longer held",
                extra={"message_id": str(message.id), "queue": self._queue_name}
            )
        return acknowledged

    async def reject(self, message: Message, requeue: bool = False) -> bool:
        """
        Reject a message.

        Args:
            message: A message delivered to this consumer.
            requeue: Return the message to the queue instead of dropping it.

        Returns:
            True if rejected, False if the claim was no longer held.
        """
        self._check_message(message)

        with get_tracer().start_as_current_span(SPAN_REJECT_MESSAGE) as span:
            span.set_attribute("message_id", str(message.id))
            span.set_attribute("queue", self._queue_name)
            span.set_attribute("requeue", requeue)
            try:
                async with get_session_context() as session:
                    repo = MessageRepository(session)
                    rejected = await repo.reject(
                        message.id,
                        message.delivery_id,
                        requeue=requeue,
                    )
            except SQLAlchemyError as e:
                raise StorageLayerError(f"Failed to reject message {message.id}") from e

        if not rejected:
            logger.warning(
                "Reject ignored, claim no longer held",
                extra={"message_id": str(message.id), "queue": self._queue_name}
            )
        return rejected

    def __repr__(self) -> str:
        return f"QueueConsumer(queue={self._queue_name!r})"
