"""
Payment ledger rows.

One payment per session. Amounts are integer cents; the platform commission
is a decimal fraction and the mentor payout is derived from both.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String
from sqlalchemy.sql import func
import ulid

from ..database import Base


class PaymentStatus(str, Enum):
    PENDING = "pending"
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class RefundStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    COMPLETED = "completed"


class PaymentProvider(str, Enum):
    STRIPE = "stripe"
    PAYMOB = "paymob"


def commission_cents(amount_cents: int, rate: Decimal | float | str) -> int:
    """Platform share of ``amount_cents``, rounded half-up to the cent."""
    share = Decimal(amount_cents) * Decimal(str(rate))
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def mentor_share_cents(amount_cents: int, rate: Decimal | float | str) -> int:
    """Mentor share of ``amount_cents`` after commission."""
    return amount_cents - commission_cents(amount_cents, rate)


class Payment(Base):
    """Financial transaction tied 1:1 to a mentorship session."""

    __tablename__ = "payments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    session_id = Column(String(26), nullable=False, unique=True)

    provider = Column(String(20), nullable=False)
    payment_intent_id = Column(String(255), nullable=True)
    provider_transaction_id = Column(String(255), nullable=True)

    amount_cents = Column(Integer, nullable=False)
    platform_commission = Column(Numeric(5, 4), nullable=False)
    mentor_payout_amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    failure_reason = Column(String(500), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    is_refunded = Column(Boolean, nullable=False, default=False)
    refund_amount_cents = Column(Integer, nullable=False, default=0)
    refund_percentage = Column(Integer, nullable=True)
    refund_status = Column(String(20), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    payment_release_date = Column(DateTime(timezone=True), nullable=True, index=True)
    is_released_to_mentor = Column(Boolean, nullable=False, default=False)
    released_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_payments_amount_non_negative"),
        CheckConstraint(
            "refund_amount_cents >= 0 AND refund_amount_cents <= amount_cents",
            name="ck_payments_refund_bounds",
        ),
    )

    @property
    def status_enum(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def mentor_refund_share_cents(self) -> int:
        """Portion of the refund that comes out of the mentor's payout."""
        if not self.refund_amount_cents:
            return 0
        return mentor_share_cents(int(self.refund_amount_cents), self.platform_commission)

    @property
    def releasable_amount_cents(self) -> int:
        """Mentor payout still held in escrow after any refund."""
        return max(0, int(self.mentor_payout_amount_cents) - self.mentor_refund_share_cents)

    def __repr__(self) -> str:
        return (
            f"<Payment {self.id} session={self.session_id} status={self.status} "
            f"released={self.is_released_to_mentor}>"
        )
