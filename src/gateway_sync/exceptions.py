"""
Exception classes for the gateway sync system.

All exceptions inherit from GatewaySyncError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class GatewaySyncError(Exception):
    """Base exception for all gateway sync errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(GatewaySyncError):
    """Raised when configuration is missing or inconsistent."""

    pass


class NetworkError(GatewaySyncError):
    """Raised when a remote call fails after the collaborator gave up retrying."""

    pass


class FeedError(NetworkError):
    """Raised when a feed cannot be downloaded."""

    @property
    def url(self) -> Optional[str]:
        return self.details.get("url")


class GatewayError(NetworkError):
    """Raised when a gateway API operation fails."""

    @property
    def operation(self) -> Optional[str]:
        """The remote operation that failed (e.g. 'create_list')."""
        return self.details.get("operation")

    @property
    def status_code(self) -> Optional[int]:
        return self.details.get("status_code")


class RateLimitError(GatewayError):
    """Raised when the gateway keeps answering HTTP 429 after all cooldowns."""

    pass


class NotificationError(GatewaySyncError):
    """Raised when notification delivery fails."""

    pass
