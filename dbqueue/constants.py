"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class ConsumeResult(StrEnum):
    """
    Outcome returned by a subscription callback.

    CONTINUE keeps the polling loop running; STOP makes ``consume``
    return immediately after the callback.
    """

    CONTINUE = "continue"
    STOP = "stop"


# Default values
DEFAULT_REDELIVERY_DELAY_MS = 1_200_000  # 20 minutes
DEFAULT_IDLE_BACKOFF_MS = 200
DEFAULT_CLAIM_ATTEMPTS = 3
DEFAULT_PRIORITY = 0

# Storage
QUEUE_TABLE_NAME = "queue_messages"

# Metrics names
METRIC_MESSAGES_CLAIMED = "queue_messages_claimed_total"
METRIC_MESSAGES_REDELIVERED = "queue_messages_redelivered_total"
METRIC_CLAIM_RACES_LOST = "queue_claim_races_lost_total"
METRIC_CALLBACK_DURATION = "queue_callback_duration_seconds"
METRIC_IDLE_POLLS = "queue_idle_polls_total"
METRIC_CLAIMS_RELEASED = "queue_expired_claims_released_total"
METRIC_MESSAGES_EXPIRED = "queue_messages_expired_total"
METRIC_QUEUE_DEPTH = "queue_depth"

# Trace span names
SPAN_CLAIM_MESSAGE = "claim_message"
SPAN_DISPATCH_MESSAGE = "dispatch_message"
SPAN_ACK_MESSAGE = "ack_message"
SPAN_REJECT_MESSAGE = "reject_message"
