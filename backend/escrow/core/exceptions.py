# backend/escrow/core/exceptions.py
"""
Domain-specific exceptions for the escrow engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

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

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException using the class status code."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


class IntegrityException(DomainException):
    """
    Raised when ledger state contradicts itself.

    Integrity failures are never retried automatically; they need an
    operator to investigate the bookkeeping upstream.
    """


# Conflict errors


class SlotUnavailableException(ConflictException):
    """Raised when a time slot is already booked or no longer bookable."""

    def __init__(self, time_slot_id: str, reason: str = "Time slot is no longer available"):
        super().__init__(
            message=reason,
            code="SLOT_UNAVAILABLE",
            details={"time_slot_id": time_slot_id},
        )


class DuplicatePaymentException(ConflictException):
    """Raised when a session already has a payment."""

    def __init__(self, session_id: str):
        super().__init__(
            message="A payment already exists for this session",
            code="DUPLICATE_PAYMENT",
            details={"session_id": session_id},
        )


class PaymentConflictException(ConflictException):
    """Raised when a capture arrives with a different provider transaction."""

    def __init__(self, payment_id: str, existing: Optional[str], incoming: str):
        super().__init__(
            message="Payment was already captured with a different transaction",
            code="PAYMENT_CONFLICT",
            details={
                "payment_id": payment_id,
                "existing_transaction_id": existing,
                "incoming_transaction_id": incoming,
            },
        )


class AlreadyReleasedException(ConflictException):
    """Raised when funds for a payment have already left escrow."""

    def __init__(self, payment_id: str):
        super().__init__(
            message="Payment has already been released to the mentor",
            code="ALREADY_RELEASED",
            details={"payment_id": payment_id},
        )


class DuplicateDisputeException(ConflictException):
    """Raised when an unresolved dispute already exists for a session."""

    def __init__(self, session_id: str):
        super().__init__(
            message="An open dispute already exists for this session",
            code="DUPLICATE_DISPUTE",
            details={"session_id": session_id},
        )


# Business rule errors


class InvalidTransitionException(BusinessRuleException):
    """Raised when an entity cannot move from its current status."""

    def __init__(self, entity: str, entity_id: str, current: str, target: str):
        super().__init__(
            message=f"{entity} cannot transition from {current} to {target}",
            code="INVALID_TRANSITION",
            details={
                "entity": entity,
                "id": entity_id,
                "current_status": current,
                "target_status": target,
            },
        )


class InsufficientNoticeException(BusinessRuleException):
    """Raised when an action doesn't meet minimum advance notice."""

    def __init__(self, action: str, required_hours: int, provided_hours: float):
        super().__init__(
            message=f"{action} must be made at least {required_hours} hours in advance",
            code="INSUFFICIENT_NOTICE",
            details={
                "required_hours": required_hours,
                "provided_hours": round(provided_hours, 2),
            },
        )


class InsufficientAvailableBalanceException(BusinessRuleException):
    """Raised when a payout exceeds the mentor's available balance."""

    def __init__(self, mentor_id: str, requested_cents: int):
        super().__init__(
            message="Insufficient available balance",
            code="INSUFFICIENT_AVAILABLE_BALANCE",
            details={"mentor_id": mentor_id, "requested_cents": requested_cents},
        )


# Integrity errors


class InsufficientPendingBalanceException(IntegrityException):
    """Raised when pending balance cannot cover a release or reversal."""

    def __init__(self, mentor_id: str, requested_cents: int, pending_cents: Optional[int] = None):
        super().__init__(
            message="Pending balance is lower than the amount being moved",
            code="INSUFFICIENT_PENDING_BALANCE",
            details={
                "mentor_id": mentor_id,
                "requested_cents": requested_cents,
                "pending_cents": pending_cents,
            },
        )


class ReleaseIntegrityException(IntegrityException):
    """Raised when a release job references rows that do not exist."""

    def __init__(self, message: str, *, session_id: str):
        super().__init__(
            message=message,
            code="RELEASE_INTEGRITY",
            details={"session_id": session_id},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
