"""
Worker module.
Contains the queue worker and callback loading.
"""

from dbqueue.worker.main import Worker, run

__all__ = ["Worker", "run"]
