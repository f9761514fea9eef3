"""
SQLAlchemy database models.
Defines the queue message table.
"""

import time
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from dbqueue.constants import DEFAULT_PRIORITY, QUEUE_TABLE_NAME

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JsonType = JSON().with_variant(JSONB(), "postgresql")


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class QueueMessage(Base):
    """
    A message row in the queue table.

    A row is available for claiming when it has no claim (delivery_id is
    NULL) or its claim has expired (redeliver_after is in the past), it is
    not delayed into the future, and its time to live has not elapsed.

    All timestamps are integer milliseconds since the epoch.
    """

    __tablename__ = QUEUE_TABLE_NAME

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        nullable=False,
    )

    queue: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Opaque payload
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    headers: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    properties: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)

    # Ordering within a queue
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_PRIORITY,
    )
    published_at: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=now_ms,
    )

    redelivered: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    # Claim management
    delivery_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        nullable=True,
        index=True,
    )
    redeliver_after: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )

    # Scheduling
    delayed_until: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )
    time_to_live: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
        index=True,
    )

    __table_args__ = (
        # Index for claim polling
        Index(
            "ix_queue_messages_claim",
            "queue",
            "priority",
            "published_at",
            "delivery_id",
            "redeliver_after",
        ),
        # Index for claim expiry checks
        Index("ix_queue_messages_redeliver_after", "redeliver_after"),
    )

    def is_available(self, at_ms: int | None = None) -> bool:
        """Check whether the row could be claimed at the given time."""
        at_ms = now_ms() if at_ms is None else at_ms
        if self.delivery_id is not None and (
            self.redeliver_after is None or self.redeliver_after >= at_ms
        ):
            return False
        if self.delayed_until is not None and self.delayed_until > at_ms:
            return False
        if self.time_to_live is not None and self.time_to_live <= at_ms:
            return False
        return True

    def __repr__(self) -> str:
        return (
            f"QueueMessage(id={self.id}, queue={self.queue}, "
            f"delivery_id={self.delivery_id}, redelivered={self.redelivered})"
        )
