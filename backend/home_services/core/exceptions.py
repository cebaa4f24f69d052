# backend/home_services/core/exceptions.py
"""
Domain-specific exceptions for the booking lifecycle and settlement engine.

Every refused operation raises one of these. Each exception carries a
machine-readable ``kind`` so the calling layer can map it to a response
mechanically, plus a human-readable message and optional details.
"""

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class ErrorKind(str, Enum):
    """Failure categories surfaced to callers."""

    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    UNAUTHORIZED = "unauthorized"
    INVALID_INPUT = "invalid_input"
    NOT_ELIGIBLE = "not_eligible"
    NOTHING_TO_SETTLE = "nothing_to_settle"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    INTERNAL = "internal"


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "details": self.details,
        }

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_payload())


class NotFoundException(DomainException):
    """Raised when a booking, provider, payment, payout or review is missing."""

    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateException(DomainException):
    """Raised when an action is not permitted from the entity's current status."""

    kind = ErrorKind.INVALID_STATE
    status_code = status.HTTP_409_CONFLICT

    def __init__(
        self,
        message: str,
        *,
        current_status: Optional[str] = None,
        action: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(details or {})
        if current_status is not None:
            merged["current_status"] = current_status
        if action is not None:
            merged["action"] = action
        super().__init__(message, code=code or "INVALID_STATE", details=merged)


class UnauthorizedActionException(DomainException):
    """Raised when the actor is not the customer or assigned provider for the action."""

    kind = ErrorKind.UNAUTHORIZED
    status_code = status.HTTP_403_FORBIDDEN


class ValidationException(DomainException):
    """Raised when input fails business validation (bad rating, past reschedule, ...)."""

    kind = ErrorKind.INVALID_INPUT
    status_code = HTTP_422_UNPROCESSABLE


class NotEligibleException(DomainException):
    """Raised when a provider is not eligible for the booking (does not offer the service)."""

    kind = ErrorKind.NOT_ELIGIBLE
    status_code = HTTP_422_UNPROCESSABLE


class NothingToSettleException(DomainException):
    """Raised when a settlement run finds no unclaimed eligible bookings."""

    kind = ErrorKind.NOTHING_TO_SETTLE
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, provider_id: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or "No unsettled completed bookings found for payout period",
            code="NOTHING_TO_SETTLE",
            details={"provider_id": provider_id},
        )


class ConcurrencyConflictException(DomainException):
    """Raised when a claim or aggregate update lost a race; the caller should retry."""

    kind = ErrorKind.CONCURRENCY_CONFLICT
    status_code = status.HTTP_409_CONFLICT
    retryable = True


class ServiceException(DomainException):
    """Raised when a service operation fails for an unexpected storage reason."""

    retryable = True

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["message"] = self.message or "An error occurred processing your request"
        return payload


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
