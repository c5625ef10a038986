"""Cancellation record for a cancelled session."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func
import ulid

from ..database import Base


class CancelledByRole(str, Enum):
    MENTEE = "mentee"
    MENTOR = "mentor"
    ADMIN = "admin"


class SessionCancellation(Base):
    """Who cancelled a session, why, and what was refunded."""

    __tablename__ = "session_cancellations"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    session_id = Column(String(26), nullable=False, unique=True)
    reason = Column(Text, nullable=False)
    cancelled_by = Column(String(26), nullable=False)
    cancelled_by_role = Column(String(10), nullable=False)
    refund_amount_cents = Column(Integer, nullable=False, default=0)
    refund_percentage = Column(Integer, nullable=False, default=0)
    refund_status = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return (
            f"<SessionCancellation session={self.session_id} by={self.cancelled_by_role} "
            f"refund={self.refund_amount_cents}>"
        )
