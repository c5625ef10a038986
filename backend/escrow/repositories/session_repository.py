"""Data access for mentorship sessions."""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.mentorship_session import MentorshipSession, SessionStatus
from ..models.time_slot import ALLOWED_DURATIONS, TimeSlot
from .base_repository import BaseRepository

_LIVE_STATUSES = (
    SessionStatus.PENDING.value,
    SessionStatus.CONFIRMED.value,
    SessionStatus.PENDING_RESCHEDULE.value,
    SessionStatus.IN_PROGRESS.value,
)


class SessionRepository(BaseRepository[MentorshipSession]):
    def __init__(self, db: Session):
        super().__init__(db, MentorshipSession)

    def has_overlapping_session(
        self,
        mentee_id: str,
        start: datetime,
        end: datetime,
        exclude_session_id: Optional[str] = None,
    ) -> bool:
        """Return True if the mentee already has a live session overlapping [start, end)."""
        try:
            query = self.db.query(MentorshipSession.id).filter(
                MentorshipSession.mentee_id == mentee_id,
                MentorshipSession.status.in_(_LIVE_STATUSES),
                MentorshipSession.scheduled_start_time < end,
                MentorshipSession.scheduled_end_time > start,
            )
            if exclude_session_id:
                query = query.filter(MentorshipSession.id != exclude_session_id)
            return query.first() is not None
        except SQLAlchemyError as exc:
            self.logger.error("Failed to check overlap for mentee %s: %s", mentee_id, str(exc))
            raise RepositoryException("Failed to check session overlap") from exc

    def has_mentor_conflict(
        self,
        mentor_id: str,
        start: datetime,
        end: datetime,
        exclude_session_id: Optional[str] = None,
    ) -> bool:
        """
        Return True if the mentor is already taken during [start, end).

        Covers the mentor's live sessions and any booked slot held by another
        session.
        """
        try:
            sessions = self.db.query(MentorshipSession.id).filter(
                MentorshipSession.mentor_id == mentor_id,
                MentorshipSession.status.in_(_LIVE_STATUSES),
                MentorshipSession.scheduled_start_time < end,
                MentorshipSession.scheduled_end_time > start,
            )
            if exclude_session_id:
                sessions = sessions.filter(MentorshipSession.id != exclude_session_id)
            if sessions.first() is not None:
                return True

            slots = self.db.query(TimeSlot).filter(
                TimeSlot.mentor_id == mentor_id,
                TimeSlot.is_booked.is_(True),
                TimeSlot.start_time < end,
                TimeSlot.start_time > start - timedelta(minutes=max(ALLOWED_DURATIONS)),
            )
            if exclude_session_id:
                slots = slots.filter(
                    or_(TimeSlot.session_id.is_(None), TimeSlot.session_id != exclude_session_id)
                )
            return any(slot.end_time > start for slot in slots)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to check overlap for mentor %s: %s", mentor_id, str(exc))
            raise RepositoryException("Failed to check mentor availability") from exc
