"""Exception hierarchy shared by the broker client, workers and store."""


class QueueWorkerError(Exception):
    """Base class for all queue_worker errors."""


class ConfigurationError(QueueWorkerError):
    """Raised when configuration values cannot be loaded or coerced."""


class TransportError(QueueWorkerError):
    """Raised when the broker is unreachable or a channel operation fails."""


class ValidationError(QueueWorkerError):
    """Raised when a message payload does not have the expected shape."""


class EnvelopeDecodeError(ValidationError):
    """Raised when a message body cannot be decoded into an Envelope."""


class DeliveryAlreadySettled(QueueWorkerError):
    """Raised when a delivery is acked or nacked a second time."""


class StoreError(QueueWorkerError):
    """Base class for record store errors."""


class ConstraintViolation(StoreError):
    """Raised when a write conflicts with a unique constraint."""


class NotFound(StoreError):
    """Raised when a lookup, update or delete matches no row."""
