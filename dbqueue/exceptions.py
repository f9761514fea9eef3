"""
Queue error taxonomy.
"""


class QueueError(Exception):
    """Base class for all queue errors."""

    pass


class NoSubscribersError(QueueError):
    """Raised when consumption starts without any subscription."""

    def __init__(self) -> None:
        super().__init__("No subscribers")


class DuplicateSubscriptionError(QueueError):
    """Raised when a queue already has a different subscriber."""

    def __init__(self, queue_name: str):
        self.queue_name = queue_name
        super().__init__(f'There is a consumer subscribed to queue: "{queue_name}"')


class InvalidHandlerTypeError(QueueError, TypeError):
    """Raised when a handler is not a QueueConsumer."""

    def __init__(self, expected: type, got: object):
        self.expected = expected
        self.got = type(got)
        super().__init__(
            f'The consumer must be instance of "{expected.__name__}" '
            f'got "{type(got).__name__}"'
        )


class StorageLayerError(QueueError):
    """Raised when the queue table cannot be read or written."""

    pass
