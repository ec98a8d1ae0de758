"""Exception hierarchy for webhook processing.

Each class carries the HTTP status the webhook endpoint answers with.
"""


class RFDDiscussionsError(Exception):
    """Base exception for all webhook processing errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AuthenticationError(RFDDiscussionsError):
    """Raised when the webhook signature is missing, malformed or wrong."""

    status_code = 401


class ConfigurationError(RFDDiscussionsError):
    """Raised when a required setting (secret, parent channel) is absent."""


class InvalidPayloadError(RFDDiscussionsError):
    """Raised when the payload is not JSON, lacks required fields or names an unknown event."""

    status_code = 400


class ResourceNotFoundError(RFDDiscussionsError):
    """Raised when the parent room, discussion room or app user cannot be resolved."""


class ChatPlatformError(RFDDiscussionsError):
    """Raised when a chat platform call fails."""


class StoreUnavailableError(RFDDiscussionsError):
    """Raised when the discussion store cannot be read or written."""
