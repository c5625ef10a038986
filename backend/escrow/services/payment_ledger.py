"""
Payment ledger.

Records the financial transaction tied to each session. Methods flush but do
not commit: callers wrap them in a scoped transaction together with the
matching session or balance change.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    AlreadyReleasedException,
    DuplicatePaymentException,
    InvalidTransitionException,
    NotFoundException,
    PaymentConflictException,
    ValidationException,
)
from ..core.timezone_utils import utcnow
from ..models.mentorship_session import MentorshipSession, SessionStatus
from ..models.payment import (
    Payment,
    PaymentProvider,
    PaymentStatus,
    RefundStatus,
    mentor_share_cents,
)
from ..repositories.factory import RepositoryFactory
from .base import BaseService


class PaymentLedger(BaseService):
    """State changes for session payments."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)

    def get_payment(self, payment_id: str, for_update: bool = False) -> Payment:
        payment = self.payment_repository.get_by_id(payment_id, for_update=for_update)
        if payment is None:
            raise NotFoundException(f"Payment {payment_id} not found", code="PAYMENT_NOT_FOUND")
        return payment

    def get_for_session(self, session_id: str, for_update: bool = False) -> Optional[Payment]:
        return self.payment_repository.get_by_session_id(session_id, for_update=for_update)

    @BaseService.measure_operation("payment.create_pending")
    def create_pending(
        self,
        session: MentorshipSession,
        provider: PaymentProvider | str,
        amount_cents: int,
        commission: Decimal | float | None = None,
    ) -> Payment:
        """Create the single pending payment for ``session``."""
        if session.status != SessionStatus.PENDING.value:
            raise InvalidTransitionException(
                "Session", str(session.id), str(session.status), "payment_pending"
            )
        if session.payment_id or self.payment_repository.get_by_session_id(str(session.id)):
            raise DuplicatePaymentException(str(session.id))
        if amount_cents <= 0:
            raise ValidationException("Payment amount must be positive", code="INVALID_AMOUNT")

        rate = Decimal(str(settings.platform_commission if commission is None else commission))
        payment = self.payment_repository.create(
            session_id=session.id,
            provider=PaymentProvider(provider).value,
            amount_cents=amount_cents,
            platform_commission=rate,
            mentor_payout_amount_cents=mentor_share_cents(amount_cents, rate),
            currency=settings.currency,
            status=PaymentStatus.PENDING.value,
        )
        session.payment_id = payment.id
        self.db.flush()
        self.logger.info(
            "Pending payment created",
            extra={"payment_id": payment.id, "session_id": session.id, "amount_cents": amount_cents},
        )
        return payment

    @BaseService.measure_operation("payment.mark_captured")
    def mark_captured(self, payment_id: str, provider_transaction_id: str) -> Payment:
        """
        Record provider capture.

        Repeating the call with the same transaction id is a no-op; a different
        id means two captures disagree and is rejected.
        """
        with self.transaction():
            payment = self.get_payment(payment_id, for_update=True)
            if payment.status == PaymentStatus.CAPTURED.value:
                if payment.provider_transaction_id == provider_transaction_id:
                    self.logger.info("Duplicate capture ignored for payment %s", payment_id)
                    return payment
                raise PaymentConflictException(
                    payment_id, payment.provider_transaction_id, provider_transaction_id
                )
            if payment.status not in (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value):
                raise InvalidTransitionException(
                    "Payment", payment_id, str(payment.status), PaymentStatus.CAPTURED.value
                )
            payment.status = PaymentStatus.CAPTURED.value
            payment.provider_transaction_id = provider_transaction_id
            payment.failure_reason = None
            payment.paid_at = utcnow()
            self.db.flush()
        self.logger.info("Payment %s captured", payment_id)
        return payment

    @BaseService.measure_operation("payment.mark_failed")
    def mark_failed(self, payment_id: str, reason: str) -> Payment:
        with self.transaction():
            payment = self.get_payment(payment_id, for_update=True)
            if payment.status == PaymentStatus.FAILED.value:
                return payment
            if payment.status != PaymentStatus.PENDING.value:
                raise InvalidTransitionException(
                    "Payment", payment_id, str(payment.status), PaymentStatus.FAILED.value
                )
            payment.status = PaymentStatus.FAILED.value
            payment.failure_reason = reason[:500]
            self.db.flush()
        self.logger.warning("Payment %s failed: %s", payment_id, reason)
        return payment

    def _resolve(self, payment: Payment | str) -> Payment:
        if isinstance(payment, Payment):
            return payment
        return self.get_payment(payment, for_update=True)

    def cancel_payment(self, payment: Payment | str) -> None:
        """Void a payment that was never captured."""
        payment = self._resolve(payment)
        if payment.status not in (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value):
            raise InvalidTransitionException(
                "Payment", str(payment.id), str(payment.status), PaymentStatus.CANCELLED.value
            )
        payment.status = PaymentStatus.CANCELLED.value
        self.db.flush()

    def apply_refund(self, payment: Payment | str, percentage: int, amount_cents: int) -> Payment:
        """Record a refund on a captured payment that has not left escrow."""
        payment = self._resolve(payment)
        if payment.is_released_to_mentor:
            raise AlreadyReleasedException(str(payment.id))
        if payment.status != PaymentStatus.CAPTURED.value or payment.is_refunded:
            raise InvalidTransitionException(
                "Payment", str(payment.id), str(payment.status), PaymentStatus.REFUNDED.value
            )
        if not 1 <= percentage <= 100:
            raise ValidationException(
                "Refund percentage must be between 1 and 100", code="INVALID_REFUND_PERCENTAGE"
            )
        if amount_cents <= 0 or amount_cents > int(payment.amount_cents):
            raise ValidationException(
                "Refund amount must be positive and not exceed the payment amount",
                code="INVALID_REFUND_AMOUNT",
                details={"amount_cents": payment.amount_cents, "refund_amount_cents": amount_cents},
            )

        payment.is_refunded = True
        payment.refund_amount_cents = amount_cents
        payment.refund_percentage = percentage
        payment.refund_status = RefundStatus.COMPLETED.value
        payment.status = PaymentStatus.REFUNDED.value
        payment.refunded_at = utcnow()
        self.db.flush()
        self.logger.info(
            "Refund applied",
            extra={"payment_id": payment.id, "refund_amount_cents": amount_cents, "percentage": percentage},
        )
        return payment

    def mark_released(self, payment: Payment | str, when: datetime | None = None) -> None:
        """Flag escrowed funds as released; only the first caller wins."""
        payment = self._resolve(payment)
        released_at = when or utcnow()
        if payment.is_released_to_mentor or not self.payment_repository.mark_released(
            str(payment.id), released_at
        ):
            raise AlreadyReleasedException(str(payment.id))
        self.db.refresh(payment, attribute_names=["is_released_to_mentor", "released_at"])

    @staticmethod
    def releasable_amount_cents(payment: Payment) -> int:
        return payment.releasable_amount_cents
