"""
Service layer custom exceptions.

Store-level errors (ConflictError, StoreUnavailableError) are raised by the
player record store. The remaining classes are the user-facing errors the
identity resolver raises after reinterpreting store and TETR.IO failures.
"""

from typing import Any, Dict, Optional


class ServiceException(Exception):
    """Base exception for all service layer errors."""

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.service = service
        self.operation = operation
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        if self.service and self.operation:
            return f"[{self.service}.{self.operation}] {self.message}"
        return self.message


class ConflictError(ServiceException):
    """A write would break a uniqueness invariant or lost an optimistic race."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            service="PlayerRecordStore",
            operation=operation,
            context=context,
            original_error=original_error,
        )


class StoreUnavailableError(ServiceException):
    """The persistence engine could not be reached or did not answer in time."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message=f"Store unavailable: {message}",
            service="PlayerRecordStore",
            operation=operation,
            context=context,
            original_error=original_error,
        )


class IdentityError(ServiceException):
    """Base class for errors surfaced by the identity resolver."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            service="IdentityResolver",
            operation=operation,
            context=context,
            original_error=original_error,
        )


class UnknownPlayerError(IdentityError):
    """TETR.IO has no user by that name. Retry with a corrected name."""


class ServiceUnavailableError(IdentityError):
    """TETR.IO kept failing after retries. Retry later."""


class LinkConflictError(IdentityError):
    """The link could not be written without breaking ownership rules."""


class NotLinkedError(IdentityError):
    """The Discord user has no linked TETR.IO account."""


class InvalidQueryError(IdentityError):
    """The lookup text cannot be used as a username, id or mention."""
