"""
Message type definitions.
"""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from dbqueue.constants import ConsumeResult

if TYPE_CHECKING:
    from dbqueue.consumer.queue_consumer import QueueConsumer
    from dbqueue.db.models import QueueMessage


class Message(BaseModel):
    """
    A message handed to subscription callbacks.
    Body, headers and properties are opaque to the queue.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID
    queue: str
    body: str | None = None
    headers: dict[str, Any] = Field(default_factory=dict)
    properties: dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    published_at: int
    redelivered: bool = False
    delivery_id: UUID | None = None
    redeliver_after: int | None = None

    @classmethod
    def from_row(cls, row: "QueueMessage") -> "Message":
        """Build a message from a claimed table row."""
        return cls(
            id=row.id,
            queue=row.queue,
            body=row.body,
            headers=dict(row.headers or {}),
            properties=dict(row.properties or {}),
            priority=row.priority,
            published_at=row.published_at,
            redelivered=row.redelivered,
            delivery_id=row.delivery_id,
            redeliver_after=row.redeliver_after,
        )


# Subscription callbacks may be sync or async. Returning ConsumeResult.STOP
# ends the polling loop; anything else keeps it going.
CallbackResult = Union[ConsumeResult, None]
MessageCallback = Callable[
    [Message, "QueueConsumer"],
    Union[CallbackResult, Awaitable[CallbackResult]],
]
