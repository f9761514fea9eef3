"""
Type definitions for the message queue.
"""

from dbqueue.types.message import CallbackResult, Message, MessageCallback

__all__ = [
    "Message",
    "MessageCallback",
    "CallbackResult",
]
