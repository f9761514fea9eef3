"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from dbqueue.consumer import QueueConsumer, SubscriptionConsumer
from dbqueue.db import close_db, create_tables, get_session_context, init_db
from dbqueue.db.models import QueueMessage
from dbqueue.db.repository import MessageRepository
from dbqueue.observability.metrics import MetricsCollector
from dbqueue.types.message import Message

PublishFn = Callable[..., Awaitable[UUID]]


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """SQLite database file unique to the test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"


@pytest_asyncio.fixture
async def database(database_url: str) -> AsyncGenerator[str]:
    """Initialized database with the queue table created."""
    await init_db(database_url)
    await create_tables()

    yield database_url

    await close_db()


@pytest_asyncio.fixture
async def empty_database(database_url: str) -> AsyncGenerator[str]:
    """Initialized database without any table."""
    await init_db(database_url)

    yield database_url

    await close_db()


@pytest.fixture
def publish(database: str) -> PublishFn:
    """Publish a message in its own transaction and return its ID."""

    async def _publish(queue: str, body: str | None = None, **kwargs: Any) -> UUID:
        async with get_session_context() as session:
            repo = MessageRepository(session)
            message = await repo.publish(queue, body, **kwargs)
            return message.id

    return _publish


@pytest.fixture
def fetch_row(database: str) -> Callable[[UUID], Awaitable[QueueMessage | None]]:
    """Read a message row in its own transaction."""

    async def _fetch(message_id: UUID) -> QueueMessage | None:
        async with get_session_context() as session:
            return await MessageRepository(session).get_message(message_id)

    return _fetch


@pytest.fixture
def queue_depth(database: str) -> Callable[..., Awaitable[int]]:
    """Count available messages."""

    async def _depth(queue: str | None = None) -> int:
        async with get_session_context() as session:
            return await MessageRepository(session).get_queue_depth(queue)

    return _depth


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def subscription_consumer(metrics: MetricsCollector) -> SubscriptionConsumer:
    """Subscription consumer with a short idle backoff."""
    return SubscriptionConsumer(idle_backoff_ms=50, metrics=metrics)


@pytest.fixture
def make_message() -> Callable[..., Message]:
    """Build a claimed message without touching the database."""

    def _make(queue: str, body: str | None = None, **kwargs: Any) -> Message:
        kwargs.setdefault("id", uuid4())
        kwargs.setdefault("published_at", 0)
        kwargs.setdefault("delivery_id", uuid4())
        return Message(queue=queue, body=body, **kwargs)

    return _make


@pytest.fixture
def orders_consumer() -> QueueConsumer:
    return QueueConsumer("orders")


@pytest.fixture
def emails_consumer() -> QueueConsumer:
    return QueueConsumer("emails")
