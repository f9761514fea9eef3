"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
)

from dbqueue.constants import (
    METRIC_CALLBACK_DURATION,
    METRIC_CLAIM_RACES_LOST,
    METRIC_CLAIMS_RELEASED,
    METRIC_IDLE_POLLS,
    METRIC_MESSAGES_CLAIMED,
    METRIC_MESSAGES_EXPIRED,
    METRIC_MESSAGES_REDELIVERED,
    METRIC_QUEUE_DEPTH,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for queue consumption.

    Collects metrics for:
    - Claimed and redelivered messages
    - Claims lost to concurrent consumers
    - Callback duration
    - Idle polling passes
    - Reaper maintenance
    - Queue depth
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.messages_claimed = Counter(
            METRIC_MESSAGES_CLAIMED,
            "Total number of messages claimed",
            ["queue"],
            registry=self._registry,
        )

        self.messages_redelivered = Counter(
            METRIC_MESSAGES_REDELIVERED,
            "Total number of messages claimed after a previous claim expired",
            ["queue"],
            registry=self._registry,
        )

        self.claim_races_lost = Counter(
            METRIC_CLAIM_RACES_LOST,
            "Total number of claims lost to another consumer",
            ["queue"],
            registry=self._registry,
        )

        self.callback_duration = Histogram(
            METRIC_CALLBACK_DURATION,
            "Subscription callback duration in seconds",
            ["queue", "result"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
            registry=self._registry,
        )

        self.idle_polls = Counter(
            METRIC_IDLE_POLLS,
            "Total number of polling passes that found no message",
            registry=self._registry,
        )

        self.claims_released = Counter(
            METRIC_CLAIMS_RELEASED,
            "Total number of expired claims released by the reaper",
            registry=self._registry,
        )

        self.messages_expired = Counter(
            METRIC_MESSAGES_EXPIRED,
            "Total number of messages removed after their time to live",
            registry=self._registry,
        )

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of messages available for claiming",
            ["queue"],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_message_claimed(self, queue: str, redelivered: bool = False) -> None:
        """Record a claimed message."""
        self.messages_claimed.labels(queue=queue).inc()
        if redelivered:
            self.messages_redelivered.labels(queue=queue).inc()

    def record_claim_race_lost(self, queue: str) -> None:
        """Record a claim that matched no row because another consumer won it."""
        self.claim_races_lost.labels(queue=queue).inc()

    def record_callback(self, queue: str, result: str, duration_seconds: float) -> None:
        """Record a callback invocation."""
        self.callback_duration.labels(queue=queue, result=result).observe(
            duration_seconds
        )

    def record_idle_poll(self) -> None:
        """Record a polling pass without work."""
        self.idle_polls.inc()

    def record_maintenance(self, released: int, expired: int) -> None:
        """Record a reaper run."""
        if released:
            self.claims_released.inc(released)
        if expired:
            self.messages_expired.inc(expired)

    def update_queue_depth(self, queue: str, depth: int) -> None:
        """Update available depth for a queue."""
        self.queue_depth.labels(queue=queue).set(depth)


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
