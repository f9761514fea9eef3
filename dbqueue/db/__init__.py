"""
Database module.
Contains database connection, models, and repository implementations.
"""

from dbqueue.db.connection import (
    close_db,
    create_tables,
    get_engine,
    get_session_context,
    init_db,
)
from dbqueue.db.models import Base, QueueMessage

__all__ = [
    "get_session_context",
    "get_engine",
    "init_db",
    "close_db",
    "create_tables",
    "QueueMessage",
    "Base",
]
