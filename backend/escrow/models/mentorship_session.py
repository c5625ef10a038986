"""
Mentorship session model and lifecycle.

A session moves through a closed set of statuses. Every status change goes
through ``transition_to`` so illegal moves are rejected in one place:

    pending -> confirmed -> in_progress -> completed
    pending | confirmed | pending_reschedule -> cancelled
    confirmed -> pending_reschedule -> confirmed
"""

from datetime import datetime
from enum import Enum
import logging
from typing import Dict, FrozenSet

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func
import ulid

from ..core.exceptions import InvalidTransitionException
from ..core.timezone_utils import ensure_utc, utcnow
from ..database import Base

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """Session lifecycle statuses."""

    PENDING = "pending"  # Booked, awaiting payment capture
    CONFIRMED = "confirmed"
    PENDING_RESCHEDULE = "pending_reschedule"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SessionType(str, Enum):
    ONE_ON_ONE = "one_on_one"


SESSION_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.CONFIRMED, SessionStatus.CANCELLED}),
    SessionStatus.CONFIRMED: frozenset(
        {
            SessionStatus.IN_PROGRESS,
            SessionStatus.COMPLETED,
            SessionStatus.PENDING_RESCHEDULE,
            SessionStatus.CANCELLED,
        }
    ),
    SessionStatus.PENDING_RESCHEDULE: frozenset(
        {SessionStatus.CONFIRMED, SessionStatus.CANCELLED}
    ),
    SessionStatus.IN_PROGRESS: frozenset({SessionStatus.COMPLETED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset(
    {SessionStatus.PENDING, SessionStatus.CONFIRMED, SessionStatus.PENDING_RESCHEDULE}
)


class MentorshipSession(Base):
    """
    A paid, scheduled session between a mentee and a mentor.

    Related rows (payment, cancellation, reschedules, disputes) reference the
    session by id; the session only keeps the id of its payment.
    """

    __tablename__ = "sessions"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    mentee_id = Column(String(26), nullable=False, index=True)
    mentor_id = Column(String(26), nullable=False, index=True)
    time_slot_id = Column(String(26), nullable=True)
    payment_id = Column(String(26), nullable=True)

    session_type = Column(String(20), nullable=False, default=SessionType.ONE_ON_ONE.value)
    duration_minutes = Column(Integer, nullable=False)
    scheduled_start_time = Column(DateTime(timezone=True), nullable=False)
    scheduled_end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=SessionStatus.PENDING.value, index=True)
    price_cents = Column(Integer, nullable=False)

    video_link = Column(String(500), nullable=True)
    topic = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_sessions_price_non_negative"),
        CheckConstraint("duration_minutes IN (30, 60)", name="ck_sessions_duration"),
        Index("ix_sessions_mentee_start", "mentee_id", "scheduled_start_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<MentorshipSession {self.id}: mentee={self.mentee_id}, "
            f"mentor={self.mentor_id}, start={self.scheduled_start_time}, status={self.status}>"
        )

    @property
    def status_enum(self) -> SessionStatus:
        return SessionStatus(self.status)

    def can_transition_to(self, target: SessionStatus) -> bool:
        return target in SESSION_TRANSITIONS[self.status_enum]

    def transition_to(self, target: SessionStatus) -> None:
        """Move to ``target`` or raise if the lifecycle forbids it."""
        current = self.status_enum
        if not self.can_transition_to(target):
            raise InvalidTransitionException("Session", str(self.id), current.value, target.value)
        self.status = target.value
        logger.info(f"Session {self.id} moved from {current.value} to {target.value}")

    def cancel(self, reason: str, when: datetime | None = None) -> None:
        """Cancel this session."""
        self.transition_to(SessionStatus.CANCELLED)
        self.cancelled_at = when or utcnow()
        self.cancellation_reason = reason

    def complete(self, when: datetime | None = None) -> None:
        """Mark session as completed."""
        self.transition_to(SessionStatus.COMPLETED)
        self.completed_at = when or utcnow()

    @property
    def is_cancellable(self) -> bool:
        return self.completed_at is None and self.status_enum in CANCELLABLE_STATUSES

    def hours_until_start(self, now: datetime) -> float:
        return (ensure_utc(self.scheduled_start_time) - ensure_utc(now)).total_seconds() / 3600
