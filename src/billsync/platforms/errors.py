"""Error taxonomy for practice-management platform operations.

Every failure raised by an adapter, the HTTP transport, or the registry is a
PlatformError carrying one ErrorCode. The sync dispatcher reads
``PlatformError.retryable`` to decide between rescheduling a queue item and
failing it outright.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Closed set of platform error codes."""

    PLATFORM_NOT_FOUND = "PLATFORM_NOT_FOUND"
    PLATFORM_NOT_CONFIGURED = "PLATFORM_NOT_CONFIGURED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    API_ERROR = "API_ERROR"
    NOT_CONFIGURED = "NOT_CONFIGURED"


RETRYABLE_CODES = frozenset({ErrorCode.API_ERROR, ErrorCode.RATE_LIMIT_EXCEEDED})


class PlatformError(Exception):
    """Base error for all practice-management platform failures.

    Args:
        message: Human-readable description.
        code: ErrorCode classifying the failure.
        platform: Platform identifier the failure belongs to.
        status_code: Upstream HTTP status, when one exists.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        platform: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.platform = platform
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """True if the queue should reschedule the operation."""
        return self.code in RETRYABLE_CODES

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.platform}: {self.message}"


class PlatformNotFoundError(PlatformError):
    def __init__(self, platform: str) -> None:
        super().__init__(
            f"Unknown practice management platform: {platform}",
            ErrorCode.PLATFORM_NOT_FOUND,
            platform,
        )


class PlatformNotConfiguredError(PlatformError):
    def __init__(self, platform: str) -> None:
        super().__init__(
            f"Platform not configured: {platform}",
            ErrorCode.PLATFORM_NOT_CONFIGURED,
            platform,
        )


class AdapterNotConfiguredError(PlatformError):
    """Raised when an adapter method is invoked before configure()."""

    def __init__(self, platform: str) -> None:
        super().__init__("Adapter not configured", ErrorCode.NOT_CONFIGURED, platform)


class AuthenticationError(PlatformError):
    def __init__(
        self,
        platform: str,
        message: str = "Authentication failed",
        status_code: int | None = 401,
    ) -> None:
        super().__init__(message, ErrorCode.AUTHENTICATION_FAILED, platform, status_code)


class RateLimitError(PlatformError):
    """429 from upstream. ``retry_after`` is the server hint in seconds, if sent."""

    def __init__(self, platform: str, retry_after: float | None = None) -> None:
        super().__init__("Rate limit exceeded", ErrorCode.RATE_LIMIT_EXCEEDED, platform, 429)
        self.retry_after = retry_after


class ValidationError(PlatformError):
    def __init__(self, platform: str, field: str, message: str, status_code: int | None = 400) -> None:
        super().__init__(
            f"Validation failed for {field}: {message}",
            ErrorCode.VALIDATION_ERROR,
            platform,
            status_code,
        )
        self.field = field


class ApiError(PlatformError):
    """Generic upstream failure (5xx, unexpected 4xx, transport errors)."""

    def __init__(self, platform: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message, ErrorCode.API_ERROR, platform, status_code)
