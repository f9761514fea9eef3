"""
Queue reaper for table maintenance.

Claims expire on their own (an expired claim is claimable again), so the
reaper is not needed for redelivery. It keeps the table tidy: expired
claims are released and flagged as redelivered, and messages past their
time to live are removed.
"""

import asyncio
import logging
import signal

from dbqueue.config import get_settings
from dbqueue.db import close_db, get_session_context, init_db
from dbqueue.db.repository import MessageRepository
from dbqueue.observability.logging import setup_logging
from dbqueue.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


class Reaper:
    """
    Periodic maintenance of the queue table.

    Each run:
    1. Releases claims whose redeliver_after has passed
    2. Removes messages whose time to live has elapsed
    3. Records metrics, including the available depth, for monitoring
    """

    def __init__(self, interval_seconds: int | None = None):
        """
        Initialize the reaper.

        Args:
            interval_seconds: Seconds between reaper runs.
        """
        settings = get_settings()
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self._running = False
        self._metrics = get_metrics()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            await asyncio.sleep(self.interval)

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False

    async def run_once(self) -> tuple[int, int]:
        """
        Run maintenance once (for testing or cron-style execution).

        Returns:
            Tuple of (released claims, removed messages).
        """
        async with get_session_context() as session:
            repo = MessageRepository(session)

            released = await repo.release_expired_claims()
            expired = await repo.remove_expired_messages()
            depth = await repo.get_queue_depth()

        self._metrics.record_maintenance(released, expired)
        self._metrics.update_queue_depth("all", depth)

        if released or expired:
            logger.info(
                "Reaper run complete",
                extra={"released": released, "expired": expired}
            )

        return released, expired


async def run_async() -> None:
    """Run the reaper asynchronously."""
    setup_logging()
    await init_db()

    reaper = Reaper()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await close_db()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
