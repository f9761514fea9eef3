"""
Integration tests for the worker and reaper processes.
"""

import asyncio

import pytest

from dbqueue.constants import ConsumeResult
from dbqueue.consumer import QueueConsumer, SubscriptionConsumer
from dbqueue.reaper import Reaper
from dbqueue.types.message import Message
from dbqueue.worker import Worker
from dbqueue.worker.handlers import handle_echo, load_callback
from dbqueue.worker.main import load_subscriptions


class TestWorkerIntegration:
    """Integration tests for the worker."""

    async def test_worker_consumes_configured_queues(
        self,
        database: str,
        metrics,
        publish,
        queue_depth,
    ):
        """Test the worker subscribes each queue and drains it."""
        await publish("orders", body="order")
        await publish("emails", body="email")

        worker = Worker(
            {"orders": handle_echo, "emails": handle_echo},
            timeout_ms=300,
            consumer=SubscriptionConsumer(idle_backoff_ms=50, metrics=metrics),
        )

        await worker.start()

        assert sorted(worker.consumer.registry.queue_names()) == ["emails", "orders"]
        assert await queue_depth() == 0

    async def test_worker_stop(self, database: str, metrics, publish):
        """Test stopping the worker ends an unbounded consume."""
        await publish("orders")
        worker = Worker(
            {"orders": lambda m, c: None},
            timeout_ms=0,
            consumer=SubscriptionConsumer(idle_backoff_ms=20, metrics=metrics),
        )

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.1)
        await worker.stop()

        await asyncio.wait_for(task, timeout=2.0)
        assert task.done()


class TestReaperIntegration:
    """Integration tests for the reaper."""

    async def test_run_once(
        self,
        database: str,
        metrics,
        publish,
        fetch_row,
    ):
        """Test the reaper releases expired claims and removes expired messages."""
        claimed_id = await publish("orders")
        expired_id = await publish("audit", time_to_live_ms=20)

        consumer = SubscriptionConsumer(redelivery_delay_ms=20, idle_backoff_ms=20, metrics=metrics)
        consumer.subscribe(QueueConsumer("orders"), lambda m, c: ConsumeResult.STOP)
        await consumer.consume(1000)
        await asyncio.sleep(0.1)

        released, expired = await Reaper(interval_seconds=1).run_once()

        assert (released, expired) == (1, 1)
        row = await fetch_row(claimed_id)
        assert row.delivery_id is None
        assert row.redelivered is True
        assert await fetch_row(expired_id) is None


class TestCallbackLoading:
    """Tests for resolving configured callbacks."""

    def test_builtin_name(self):
        """Test built-in short names resolve."""
        assert load_callback("echo") is handle_echo

    def test_module_path(self):
        """Test module:attribute paths resolve."""
        assert load_callback("dbqueue.worker.handlers:handle_echo") is handle_echo

    @pytest.mark.parametrize(
        "path",
        [
            "dbqueue.worker.handlers",
            ":handle_echo",
            "dbqueue.worker.handlers:missing",
            "dbqueue.worker.handlers:BUILTIN_CALLBACKS",
        ],
    )
    def test_invalid_paths(self, path: str):
        """Test malformed or non-callable paths are refused."""
        with pytest.raises(ValueError):
            load_callback(path)

    def test_load_subscriptions(self):
        """Test configured paths map onto queues."""
        assert load_subscriptions({"orders": "echo"}) == {"orders": handle_echo}

    async def test_echo_acknowledges(self, database: str, publish, queue_depth, metrics):
        """Test the echo callback acknowledges what it receives."""
        await publish("orders", body="ping")
        received: list[Message] = []

        async def echo_and_stop(message: Message, consumer: QueueConsumer):
            received.append(message)
            await handle_echo(message, consumer)
            return ConsumeResult.STOP

        consumer = SubscriptionConsumer(idle_backoff_ms=20, metrics=metrics)
        consumer.subscribe(QueueConsumer("orders"), echo_and_stop)
        await consumer.consume(1000)

        assert received[0].body == "ping"
        assert await queue_depth() == 0
