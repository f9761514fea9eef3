"""
Callback loading and built-in callbacks.

Callbacks must be idempotent: a message whose claim expires before it is
acknowledged is delivered again.
"""

import importlib
import logging

from dbqueue.constants import ConsumeResult
from dbqueue.consumer.queue_consumer import QueueConsumer
from dbqueue.types.message import Message, MessageCallback

logger = logging.getLogger(__name__)

# Short names usable in worker configuration
BUILTIN_CALLBACKS: dict[str, str] = {
    "echo": "dbqueue.worker.handlers:handle_echo",
}


def load_callback(path: str) -> MessageCallback:
    """
    Resolve a callback from a "package.module:attribute" path or a
    built-in short name.

    Args:
        path: Import path or built-in name.

    Returns:
        The callback.

    Raises:
        ValueError: If the path is malformed or does not name a callable.
    """
    path = BUILTIN_CALLBACKS.get(path, path)

    module_name, sep, attribute = path.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Invalid callback path: {path!r} (expected 'module:attribute')")

    module = importlib.import_module(module_name)
    try:
        callback = getattr(module, attribute)
    except AttributeError as e:
        raise ValueError(f"Module {module_name!r} has no attribute {attribute!r}") from e

    if not callable(callback):
        raise ValueError(f"Callback {path!r} is not callable")

    return callback


async def handle_echo(message: Message, consumer: QueueConsumer) -> ConsumeResult:
    """
    Echo callback for testing.

    Logs the message and acknowledges it.
    """
    logger.info(
        "Echo message",
        extra={
            "message_id": str(message.id),
            "queue": message.queue,
            "body": message.body,
            "redelivered": message.redelivered,
        }
    )
    await consumer.acknowledge(message)
    return ConsumeResult.CONTINUE
