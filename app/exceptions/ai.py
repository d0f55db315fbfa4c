# ruff: noqa: D107
"""LLM provider exceptions.

Every failure of a completion call surfaces as a ``ProviderError``; the
subclasses only refine the status code and error code that reach the client
and the logs.
"""

from typing import Any

from .base import BaseAppException


class ProviderError(BaseAppException):
    """Base exception for LLM provider errors."""

    def __init__(
        self,
        message: str = "LLM provider error occurred",
        error_code: str = "PROVIDER_ERROR",
        details: dict[str, Any] | None = None,
        status_code: int = 502,
    ):
        super().__init__(message, status_code=status_code, error_code=error_code, details=details)


class ProviderUnavailableError(ProviderError):
    """Exception raised when the provider cannot be reached or returns a server error."""

    def __init__(
        self,
        message: str = "LLM provider is temporarily unavailable",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "PROVIDER_UNAVAILABLE", details, status_code=503)


class ProviderTimeoutError(ProviderError):
    """Exception raised when a provider request times out."""

    def __init__(
        self,
        message: str = "LLM provider request timed out",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "PROVIDER_TIMEOUT", details, status_code=504)


class ProviderConfigurationError(ProviderError):
    """Exception raised when a provider is selected but not configured."""

    def __init__(
        self,
        message: str = "LLM provider is not properly configured",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "PROVIDER_CONFIGURATION_ERROR", details, status_code=503)


class ProviderRateLimitError(ProviderError):
    """Exception raised when the provider rate limit or quota is hit."""

    def __init__(
        self,
        message: str = "LLM provider rate limit exceeded",
        retry_after: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        if details is None:
            details = {}
        if retry_after:
            details["retry_after"] = retry_after
        super().__init__(message, "PROVIDER_RATE_LIMITED", details, status_code=429)


class GenerationNotReadyError(ProviderError):
    """Generation statistics are not available yet; the lookup may be retried."""

    def __init__(
        self,
        message: str = "Generation statistics not available yet",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "GENERATION_NOT_READY", details)


# Map provider HTTP status codes to exceptions
PROVIDER_STATUS_MAPPING = {
    401: ProviderConfigurationError,
    403: ProviderConfigurationError,
    404: GenerationNotReadyError,
    408: ProviderTimeoutError,
    429: ProviderRateLimitError,
    502: ProviderUnavailableError,
    503: ProviderUnavailableError,
    504: ProviderTimeoutError,
}


def map_provider_error(
    status_code: int, message: str, details: dict[str, Any] | None = None
) -> ProviderError:
    """Map a provider HTTP status code to the appropriate exception."""
    exception_class = PROVIDER_STATUS_MAPPING.get(status_code)
    if exception_class is None:
        if status_code >= 500:
            exception_class = ProviderUnavailableError
        else:
            return ProviderError(message, details={**(details or {}), "status_code": status_code})
    return exception_class(message, details=details)
