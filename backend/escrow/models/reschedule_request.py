"""Reschedule requests for confirmed sessions."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime, Index, String, Text
from sqlalchemy.sql import func
import ulid

from ..database import Base


class RescheduleStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class RescheduleRequest(Base):
    """
    In-flight reschedule proposal.

    Only one ``pending`` request exists per session at a time; approved,
    rejected and expired rows are kept as history.
    """

    __tablename__ = "session_reschedules"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    session_id = Column(String(26), nullable=False, index=True)
    original_start_time = Column(DateTime(timezone=True), nullable=False)
    new_start_time = Column(DateTime(timezone=True), nullable=False)
    new_time_slot_id = Column(String(26), nullable=True)
    requested_by = Column(String(26), nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=RescheduleStatus.PENDING.value)
    resolved_by = Column(String(26), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("ix_session_reschedules_session_status", "session_id", "status"),)

    @property
    def is_pending(self) -> bool:
        return self.status == RescheduleStatus.PENDING.value

    def __repr__(self) -> str:
        return (
            f"<RescheduleRequest {self.id} session={self.session_id} status={self.status} "
            f"new_start={self.new_start_time}>"
        )
