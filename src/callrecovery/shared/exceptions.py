"""
Custom exception classes for the application.
"""

from typing import Any


class AppException(Exception):
    """Base exception for application errors."""

    def __init__(
        self,
        message: str,
        code: str = "APP_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ConfigurationError(AppException):
    """Raised when provider credentials or identifiers are missing."""

    def __init__(
        self,
        message: str = "Calling provider is not configured",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "CONFIG_ERROR", details)


class NotFoundError(AppException):
    """Raised when a requested record does not exist."""

    def __init__(
        self,
        message: str = "Not found",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "NOT_FOUND", details)


class WebhookAuthError(AppException):
    """Raised when a shared secret or signature does not match."""

    def __init__(
        self,
        message: str = "Unauthorized",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "UNAUTHORIZED", details)


class WebhookPayloadError(AppException):
    """Raised when an inbound webhook body cannot be decoded."""

    def __init__(
        self,
        message: str = "Bad Request",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "BAD_REQUEST", details)
