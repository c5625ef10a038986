"""Disputes raised by mentees against completed sessions."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func
import ulid

from ..database import Base


class DisputeStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    REJECTED = "rejected"


ACTIVE_DISPUTE_STATUSES = (DisputeStatus.PENDING.value, DisputeStatus.UNDER_REVIEW.value)


class DisputeReason(str, Enum):
    MENTOR_NO_SHOW = "mentor_no_show"
    SESSION_ENDED_EARLY = "session_ended_early"
    TECHNICAL_ISSUES = "technical_issues"
    QUALITY_NOT_AS_EXPECTED = "quality_not_as_expected"
    INAPPROPRIATE_BEHAVIOR = "inappropriate_behavior"
    OTHER = "other"


class DisputeResolution(str, Enum):
    FULL_REFUND = "full_refund"
    PARTIAL_REFUND = "partial_refund"
    NO_REFUND = "no_refund"


class SessionDispute(Base):
    """A dispute gating release of a session's escrowed payment."""

    __tablename__ = "session_disputes"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    session_id = Column(String(26), nullable=False, index=True)
    mentee_id = Column(String(26), nullable=False)
    reason = Column(String(40), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=DisputeStatus.PENDING.value)
    resolution = Column(String(20), nullable=True)
    refund_amount_cents = Column(Integer, nullable=True)
    admin_notes = Column(Text, nullable=True)
    resolved_by = Column(String(26), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (Index("ix_session_disputes_session_status", "session_id", "status"),)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_DISPUTE_STATUSES

    def __repr__(self) -> str:
        return f"<SessionDispute {self.id} session={self.session_id} status={self.status}>"
