"""
Worker process for consuming queues.

The worker subscribes one callback per configured queue and runs the
subscription consumer until it is stopped by a signal, by a callback, or
by the configured timeout.
"""

import asyncio
import logging
import signal
from collections.abc import Mapping

from dbqueue.config import get_settings
from dbqueue.consumer import QueueConsumer, SubscriptionConsumer
from dbqueue.db import close_db, init_db
from dbqueue.observability.logging import setup_logging
from dbqueue.types.message import MessageCallback
from dbqueue.worker.handlers import load_callback

logger = logging.getLogger(__name__)


class Worker:
    """
    Queue worker that drives a SubscriptionConsumer.

    Features:
    - One subscription per queue
    - Graceful shutdown on SIGTERM/SIGINT (the current message finishes)
    """

    def __init__(
        self,
        subscriptions: Mapping[str, MessageCallback],
        timeout_ms: int | None = None,
        consumer: SubscriptionConsumer | None = None,
    ):
        """
        Initialize the worker.

        Args:
            subscriptions: Callback per queue name.
            timeout_ms: Consume timeout, 0 for none.
            consumer: Subscription consumer to drive.
        """
        settings = get_settings()

        self.timeout_ms = (
            settings.queue_consume_timeout_ms if timeout_ms is None else timeout_ms
        )
        self.consumer = consumer or SubscriptionConsumer()

        for queue_name, callback in subscriptions.items():
            self.consumer.subscribe(QueueConsumer(queue_name), callback)

    async def start(self) -> None:
        """Start consuming."""
        logger.info(
            "Worker starting",
            extra={
                "queues": self.consumer.registry.queue_names(),
                "timeout_ms": self.timeout_ms,
            }
        )

        await self.consumer.consume(self.timeout_ms)

        logger.info("Worker stopped")

    async def stop(self) -> None:
        """Stop the worker gracefully."""
        logger.info("Worker stopping")
        self.consumer.stop()


def load_subscriptions(paths: Mapping[str, str]) -> dict[str, MessageCallback]:
    """Resolve configured callback paths per queue."""
    return {queue_name: load_callback(path) for queue_name, path in paths.items()}


async def run_async(
    subscriptions: Mapping[str, MessageCallback] | None = None,
    timeout_ms: int | None = None,
) -> None:
    """
    Run the worker asynchronously.

    Args:
        subscriptions: Callback per queue; read from settings when omitted.
        timeout_ms: Consume timeout; read from settings when omitted.
    """
    setup_logging()

    if subscriptions is None:
        subscriptions = load_subscriptions(get_settings().worker_subscriptions)

    await init_db()

    worker = Worker(subscriptions, timeout_ms=timeout_ms)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
