"""
Error taxonomy for the location services.

Provider failures are recorded in response metadata and only raised when a
whole strategy is exhausted; validation errors are raised immediately.
"""
from typing import List, Optional


class LocationServiceError(Exception):
    """Base class for all location service failures."""

    retryable: bool = False

    def __init__(self, message: str, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable


class ValidationError(LocationServiceError):
    """Malformed request. Never retried."""

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message, retryable=False)
        self.details = details or []


class RateLimitExceeded(LocationServiceError):
    """A local budget or an upstream throttle refused the call."""

    retryable = True

    def __init__(self, service: str, retry_after_seconds: Optional[float] = None, message: Optional[str] = None):
        super().__init__(message or f"{service} rate limit exceeded")
        self.service = service
        self.retry_after_seconds = retry_after_seconds


class ProviderUnavailable(LocationServiceError):
    """Network error, timeout, 5xx or an unusable provider response."""

    retryable = True

    def __init__(
        self,
        service: str,
        message: str,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
        errors: Optional[list] = None,
    ):
        super().__init__(message, retryable=retryable)
        self.service = service
        self.status_code = status_code
        # ApiError entries collected when a whole strategy was exhausted
        self.errors = errors or []


class InternalError(LocationServiceError):
    """Unexpected failure, surfaced to callers as service unavailable."""

    def __init__(self, message: str = "Location search temporarily unavailable"):
        super().__init__(message, retryable=False)
