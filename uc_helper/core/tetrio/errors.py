"""Custom error classes for the TETR.IO API client."""

from typing import Optional, Dict, Any


class TetrioAPIError(Exception):
    """Base exception for TETR.IO API errors with status code tracking."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        """
        Initialize TetrioAPIError.

        Args:
            message: Error message
            status_code: HTTP status code (400, 404, 429, 503, etc.)
            response_data: Raw response data from API
            retry_after: Seconds to wait before retry (for 429 errors)
        """
        super().__init__(message)
        self.status_code: Optional[int] = status_code
        self.response_data: Dict[str, Any] = response_data or {}
        self.retry_after: Optional[float] = retry_after
        self.message: str = message

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.status_code == 429 and self.retry_after:
            return f"Rate Limit Error {self.status_code}: {self.message} (Retry after: {self.retry_after}s)"
        if self.status_code:
            return f"TETR.IO API Error {self.status_code}: {self.message}"
        return f"TETR.IO API Error: {self.message}"


class NotFoundError(TetrioAPIError):
    """No such user (404 or an unsuccessful envelope) - never retried."""

    pass


class TransientError(TetrioAPIError):
    """Server error, timeout or transport failure that outlived the retries."""

    pass


class RateLimitError(TransientError):
    """Rate limit error (429) - can be retried after cooldown."""

    pass


class BadRequestError(TetrioAPIError):
    """The request was rejected locally before being sent."""

    pass


class InvalidResponseError(TetrioAPIError):
    """The response did not match the expected shape or value ranges."""

    pass
