"""Mentor withdrawal requests."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.sql import func
import ulid

from ..database import Base


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Payout(Base):
    """Funds a mentor has asked to withdraw from their available balance."""

    __tablename__ = "payouts"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    mentor_id = Column(String(26), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=PayoutStatus.PENDING.value, index=True)
    failure_reason = Column(String(500), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (CheckConstraint("amount_cents > 0", name="ck_payouts_amount_positive"),)

    def __repr__(self) -> str:
        return f"<Payout {self.id} mentor={self.mentor_id} amount={self.amount_cents} status={self.status}>"
