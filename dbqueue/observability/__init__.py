"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from dbqueue.observability.logging import setup_logging
from dbqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from dbqueue.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
]
