"""
Custom exceptions for the service layer.

Business-payload and lookup errors are raised to callers and translated
to HTTP responses by the API layer. Channel errors are raised by channel
adapters and always caught by the DeliveryRouter; they never reach a
caller of create_and_send.
"""

from typing import Any, Optional


class ServiceError(Exception):
    """Base exception for service layer errors."""
    pass


class NotFoundError(ServiceError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class RecipientNotFoundError(NotFoundError):
    """Raised when a recipient id cannot be resolved."""

    def __init__(self, identifier: Any):
        super().__init__("Recipient", identifier)


class ValidationError(ServiceError):
    """Raised when a business payload or preference update is malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class UnknownNotificationTypeError(ValidationError):
    """Raised for a notification type that was never registered."""

    def __init__(self, notification_type: str):
        self.notification_type = notification_type
        super().__init__(
            f"Notification type '{notification_type}' is not registered",
            field="type",
        )


class PersistenceError(ServiceError):
    """Raised when the notification store itself cannot be written."""
    pass


class InvalidTransitionError(ServiceError):
    """Raised on a lifecycle transition the state machine does not allow."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid notification transition: {current} -> {requested}")


# ============================================================================
# Channel Exceptions
# ============================================================================


class ChannelError(Exception):
    """Base class for failures of a single channel attempt."""

    def __init__(self, channel: str, message: str):
        self.channel = channel
        self.message = message
        super().__init__(f"[{channel}] {message}")


class ChannelTransportError(ChannelError):
    """Transient transport failure (network, gateway error, not configured)."""
    pass


class ChannelTargetInvalidError(ChannelError):
    """The target address is malformed or no longer accepted by the service."""
    pass
