"""Mentor balance aggregate."""

from __future__ import annotations

from typing import Any

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.sql import func
import ulid

from ..database import Base


class MentorBalance(Base):
    """
    Pending, available and lifetime earnings for one mentor.

    Columns are only ever changed through atomic SQL deltas issued by the
    balance repository; the check constraints back the ledger invariants.
    """

    __tablename__ = "mentor_balances"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    mentor_id = Column(String(26), nullable=False, unique=True)
    available_balance_cents = Column(Integer, nullable=False, default=0)
    pending_balance_cents = Column(Integer, nullable=False, default=0)
    total_earnings_cents = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("available_balance_cents >= 0", name="ck_mentor_balances_available"),
        CheckConstraint("pending_balance_cents >= 0", name="ck_mentor_balances_pending"),
        CheckConstraint(
            "available_balance_cents + pending_balance_cents <= total_earnings_cents",
            name="ck_mentor_balances_total",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<MentorBalance mentor={self.mentor_id} available={self.available_balance_cents} "
            f"pending={self.pending_balance_cents} total={self.total_earnings_cents}>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mentor_id": self.mentor_id,
            "available_balance_cents": self.available_balance_cents,
            "pending_balance_cents": self.pending_balance_cents,
            "total_earnings_cents": self.total_earnings_cents,
        }
