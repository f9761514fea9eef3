"""
Message repository for database operations.
Implements the storage side of the claim/redelivery protocol.
"""

import logging
from collections.abc import Collection
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from dbqueue.config import get_settings
from dbqueue.constants import DEFAULT_PRIORITY
from dbqueue.db.models import QueueMessage, now_ms
from dbqueue.observability.metrics import MetricsCollector

logger = logging.getLogger(__name__)


def available_at(at_ms: int) -> ColumnElement[bool]:
    """
    SQL condition matching rows that may be claimed at the given time.

    Args:
        at_ms: Reference time in epoch milliseconds.

    Returns:
        A boolean clause usable in WHERE.
    """
    return and_(
        or_(
            QueueMessage.delivery_id.is_(None),
            QueueMessage.redeliver_after < at_ms,
        ),
        or_(
            QueueMessage.delayed_until.is_(None),
            QueueMessage.delayed_until <= at_ms,
        ),
        or_(
            QueueMessage.time_to_live.is_(None),
            QueueMessage.time_to_live > at_ms,
        ),
    )


class MessageRepository:
    """
    Repository for queue message operations.

    Implements atomic operations for:
    - Publishing messages
    - Claiming the next available message (SKIP LOCKED select plus a
      conditional update, so two claimants never win the same row)
    - Fetching a claimed message by its claim token
    - Acknowledging, rejecting and expiring messages
    """

    def __init__(
        self,
        session: AsyncSession,
        claim_attempts: int | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
            claim_attempts: How many candidates to try when a claim loses a
                race with another consumer.
            metrics: Optional collector for lost claim races.
        """
        if claim_attempts is None:
            claim_attempts = get_settings().queue_claim_attempts
        if claim_attempts < 1:
            raise ValueError("claim_attempts must be >= 1")

        self._session = session
        self._claim_attempts = claim_attempts
        self._metrics = metrics

    async def publish(
        self,
        queue: str,
        body: str | None = None,
        headers: dict[str, Any] | None = None,
        properties: dict[str, Any] | None = None,
        priority: int = DEFAULT_PRIORITY,
        delay_ms: int | None = None,
        time_to_live_ms: int | None = None,
    ) -> QueueMessage:
        """
        Insert a new message into a queue.

        Args:
            queue: The queue name.
            body: Opaque message body.
            headers: Opaque message headers.
            properties: Opaque message properties.
            priority: Higher priorities are claimed first within a queue.
            delay_ms: Keep the message invisible for this long.
            time_to_live_ms: Discard the message if not consumed in time.

        Returns:
            The stored message.
        """
        if not queue:
            raise ValueError("Queue name must not be empty")
        if delay_ms is not None and delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")
        if time_to_live_ms is not None and time_to_live_ms < 0:
            raise ValueError("time_to_live_ms must be >= 0")

        now = now_ms()
        message = QueueMessage(
            queue=queue,
            body=body,
            headers=headers or {},
            properties=properties or {},
            priority=priority,
            published_at=now,
            redelivered=False,
            delayed_until=now + delay_ms if delay_ms else None,
            time_to_live=now + time_to_live_ms if time_to_live_ms else None,
        )
        self._session.add(message)
        await self._session.flush()

        logger.debug(
            "Published message",
            extra={"message_id": str(message.id), "queue": queue}
        )
        return message

    async def get_message(self, message_id: UUID) -> QueueMessage | None:
        """Get a message by ID."""
        stmt = (
            select(QueueMessage)
            .where(QueueMessage.id == message_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def claim_next(
        self,
        queue_names: Collection[str],
        delivery_id: UUID,
        redelivery_delay_ms: int,
    ) -> UUID | None:
        """
        Claim the next available message from the given queues.

        The candidate is selected with FOR UPDATE SKIP LOCKED where the
        dialect supports it. The claim itself is a conditional update that
        only succeeds while the row is still available, so a concurrent
        claimant that picked the same candidate gets a rowcount of zero and
        moves on to the next one.

        Args:
            queue_names: Candidate queue names.
            delivery_id: The claim token of the consuming session.
            redelivery_delay_ms: How long the claim holds before the message
                becomes claimable again.

        Returns:
            The claimed message ID, or None if nothing is available.
        """
        if not queue_names:
            return None

        names = list(queue_names)
        for _ in range(self._claim_attempts):
            now = now_ms()

            candidate_stmt = (
                select(QueueMessage.id, QueueMessage.queue, QueueMessage.delivery_id)
                .where(QueueMessage.queue.in_(names), available_at(now))
                .order_by(
                    QueueMessage.priority.desc(),
                    QueueMessage.published_at.asc(),
                    # Same-millisecond publishes are served in a stable order
                    QueueMessage.id.asc(),
                )
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            row = (await self._session.execute(candidate_stmt)).first()
            if row is None:
                return None

            message_id, queue, previous_delivery_id = row
            values: dict[str, Any] = {
                "delivery_id": delivery_id,
                "redeliver_after": now + redelivery_delay_ms,
            }
            if previous_delivery_id is not None:
                # Claim expired under a previous session
                values["redelivered"] = True

            claim_stmt = (
                update(QueueMessage)
                .where(QueueMessage.id == message_id, available_at(now))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await self._session.execute(claim_stmt)

            if result.rowcount == 1:
                logger.debug(
                    "Claimed message",
                    extra={
                        "message_id": str(message_id),
                        "delivery_id": str(delivery_id),
                        "redelivered": previous_delivery_id is not None,
                    }
                )
                return message_id

            if self._metrics is not None:
                self._metrics.record_claim_race_lost(queue)
            logger.debug(
                "Lost claim race, retrying",
                extra={
                    "message_id": str(message_id),
                    "queue": queue,
                    "delivery_id": str(delivery_id),
                }
            )

        return None

    async def get_message_by_delivery_id(
        self,
        delivery_id: UUID,
        message_id: UUID | None = None,
    ) -> QueueMessage | None:
        """
        Get a message claimed under a claim token.

        A session reuses one token for every claim, so the message ID narrows
        the lookup to the row just claimed.

        Args:
            delivery_id: The claim token.
            message_id: Optional message ID.

        Returns:
            The full message row or None if no longer claimed by the token.
        """
        filters = [QueueMessage.delivery_id == delivery_id]
        if message_id is not None:
            filters.append(QueueMessage.id == message_id)

        stmt = (
            select(QueueMessage)
            .where(and_(*filters))
            .order_by(QueueMessage.redeliver_after.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def acknowledge(self, message_id: UUID, delivery_id: UUID) -> bool:
        """
        Remove a processed message.

        Args:
            message_id: The message UUID.
            delivery_id: The claim token (must still own the message).

        Returns:
            True if the message was removed, False if the claim was lost.
        """
        stmt = (
            delete(QueueMessage)
            .where(
                QueueMessage.id == message_id,
                QueueMessage.delivery_id == delivery_id,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def reject(
        self,
        message_id: UUID,
        delivery_id: UUID,
        requeue: bool = False,
    ) -> bool:
        """
        Reject a claimed message, either dropping it or returning it to the pool.

        Args:
            message_id: The message UUID.
            delivery_id: The claim token (must still own the message).
            requeue: Release the claim instead of deleting the row.

        Returns:
            True if the message was rejected, False if the claim was lost.
        """
        if not requeue:
            return await self.acknowledge(message_id, delivery_id)

        stmt = (
            update(QueueMessage)
            .where(
                QueueMessage.id == message_id,
                QueueMessage.delivery_id == delivery_id,
            )
            .values(
                delivery_id=None,
                redeliver_after=None,
                redelivered=True,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def release_expired_claims(self) -> int:
        """
        Return messages with expired claims to the pool.

        Claiming already treats expired claims as available; releasing them
        keeps the table readable and marks the rows as redelivered.

        Returns:
            Number of released messages.
        """
        now = now_ms()
        stmt = (
            update(QueueMessage)
            .where(
                QueueMessage.delivery_id.is_not(None),
                QueueMessage.redeliver_after < now,
            )
            .values(
                delivery_id=None,
                redeliver_after=None,
                redelivered=True,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.info(f"Released {count} messages with expired claims")

        return count

    async def remove_expired_messages(self) -> int:
        """
        Delete messages whose time to live has elapsed and that are not
        held by a live claim.

        Returns:
            Number of deleted messages.
        """
        now = now_ms()
        stmt = (
            delete(QueueMessage)
            .where(
                QueueMessage.time_to_live.is_not(None),
                QueueMessage.time_to_live <= now,
                or_(
                    QueueMessage.delivery_id.is_(None),
                    QueueMessage.redeliver_after < now,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.info(f"Removed {count} expired messages")

        return count

    async def get_queue_depth(self, queue: str | None = None) -> int:
        """
        Get the number of messages available for claiming.

        Args:
            queue: Optional queue filter.

        Returns:
            Number of available messages.
        """
        filters = [available_at(now_ms())]
        if queue is not None:
            filters.append(QueueMessage.queue == queue)

        stmt = select(func.count()).select_from(QueueMessage).where(and_(*filters))
        result = await self._session.execute(stmt)
        return result.scalar() or 0
