"""Mentor-owned bookable time slots."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Index, Integer, String
from sqlalchemy.sql import func
import ulid

from ..core.timezone_utils import ensure_utc
from ..database import Base

ALLOWED_DURATIONS = (30, 60)


class TimeSlot(Base):
    """A single interval a mentor has opened for booking."""

    __tablename__ = "time_slots"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    mentor_id = Column(String(26), nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    is_booked = Column(Boolean, nullable=False, default=False)
    session_id = Column(String(26), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("duration_minutes IN (30, 60)", name="ck_time_slots_duration"),
        Index("ix_time_slots_mentor_start", "mentor_id", "start_time"),
    )

    @property
    def end_time(self) -> datetime:
        return ensure_utc(self.start_time) + timedelta(minutes=int(self.duration_minutes))

    def __repr__(self) -> str:
        return (
            f"<TimeSlot {self.id}: mentor={self.mentor_id}, start={self.start_time}, "
            f"booked={self.is_booked}>"
        )
