"""Custom exceptions for the avatar SDK."""

from enum import Enum


class SDKErrorCode(str, Enum):
    """Machine-readable error codes carried by every SDK exception."""

    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"
    NOT_FOUND = "NOT_FOUND"
    MODEL_NOT_AVAILABLE = "MODEL_NOT_AVAILABLE"
    INVALID_BUNDLE = "INVALID_BUNDLE"
    CACHE_ERROR = "CACHE_ERROR"
    RATE_LIMITED = "RATE_LIMITED"


class SDKError(Exception):
    """Base class for SDK exceptions with an error code.

    All custom exceptions should inherit from this class and define
    their specific code for consistent handling by callers.
    """
    code: SDKErrorCode = SDKErrorCode.API_ERROR

    def __init__(self, message: str = "SDK error", cause: BaseException | None = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class RateLimitedError(SDKError):
    """Raised when the client-side rate limiter refuses admission.

    Either queueing is disabled and no token is available, the wait
    queue is full, or the limiter was reset while the caller waited.
    """
    code = SDKErrorCode.RATE_LIMITED

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please wait before making more requests.",
    ):
        super().__init__(message)


class InvalidBundleError(SDKError):
    """Raised on any structural violation of a .varie bundle."""
    code = SDKErrorCode.INVALID_BUNDLE


class CacheError(SDKError):
    """Raised when the underlying cache storage fails.

    Attributes:
        operation: Name of the failing storage operation
            (open, read, write, clear, count).
    """
    code = SDKErrorCode.CACHE_ERROR

    def __init__(self, operation: str, message: str | None = None, cause: BaseException | None = None):
        self.operation = operation
        super().__init__(message or f"Cache {operation} failed", cause)


class NetworkError(SDKError):
    """Raised when a request cannot be completed at the transport level."""
    code = SDKErrorCode.NETWORK_ERROR


class APIError(SDKError):
    """Raised when the API answers with an unexpected status code."""
    code = SDKErrorCode.API_ERROR

    def __init__(self, status_code: int, message: str | None = None):
        self.status_code = status_code
        super().__init__(message or f"API error: {status_code}")


class NotFoundError(SDKError):
    """Raised when a character does not exist."""
    code = SDKErrorCode.NOT_FOUND


class ModelNotAvailableError(SDKError):
    """Raised when a character has no downloadable model of any type."""
    code = SDKErrorCode.MODEL_NOT_AVAILABLE
