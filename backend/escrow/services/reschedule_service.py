"""
Reschedule workflow.

A participant proposes a new start time; the other participant approves or
rejects it. While the proposal is open the session sits in
``pending_reschedule``. Unanswered proposals expire and the session goes back
to ``confirmed`` at its original time. Payments are never touched here.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    InsufficientNoticeException,
    InvalidTransitionException,
    NotFoundException,
    SlotUnavailableException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utcnow
from ..models.mentorship_session import MentorshipSession, SessionStatus
from ..models.reschedule_request import RescheduleRequest, RescheduleStatus
from ..models.scheduled_job import JobType
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .job_scheduler import JobScheduler, reschedule_expiry_job_key
from .session_service import validate_reason


class RescheduleService(BaseService):
    def __init__(self, db: Session, scheduler: Optional[JobScheduler] = None):
        super().__init__(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.time_slot_repository = RepositoryFactory.create_time_slot_repository(db)
        self.reschedule_repository = RepositoryFactory.create_reschedule_repository(db)
        self.scheduler = scheduler or JobScheduler(db)

    def _get_session(self, session_id: str) -> MentorshipSession:
        session = self.session_repository.get_by_id(session_id, for_update=True)
        if session is None:
            raise NotFoundException(f"Session {session_id} not found", code="SESSION_NOT_FOUND")
        return session

    def _get_request(self, request_id: str) -> RescheduleRequest:
        request = self.reschedule_repository.get_by_id(request_id, for_update=True)
        if request is None:
            raise NotFoundException(
                f"Reschedule request {request_id} not found", code="RESCHEDULE_NOT_FOUND"
            )
        return request

    @staticmethod
    def _counterpart(session: MentorshipSession, user_id: str) -> str:
        if user_id == session.mentee_id:
            return str(session.mentor_id)
        if user_id == session.mentor_id:
            return str(session.mentee_id)
        raise ForbiddenException(
            "Only a participant of this session can do that", code="NOT_SESSION_PARTICIPANT"
        )

    def _require_pending(self, request: RescheduleRequest, target: RescheduleStatus) -> None:
        if not request.is_pending:
            raise InvalidTransitionException(
                "RescheduleRequest", str(request.id), str(request.status), target.value
            )

    def _require_mentor_free(
        self, session: MentorshipSession, new_start: datetime, duration: int
    ) -> None:
        if self.session_repository.has_mentor_conflict(
            str(session.mentor_id),
            new_start,
            new_start + timedelta(minutes=duration),
            exclude_session_id=str(session.id),
        ):
            raise ConflictException(
                "The mentor is not available at the new time",
                code="MENTOR_UNAVAILABLE",
                details={"session_id": str(session.id), "new_start_time": new_start.isoformat()},
            )

    @BaseService.measure_operation("reschedule.request")
    def request(
        self,
        session_id: str,
        requested_by: str,
        new_start_time: datetime,
        reason: str,
        new_time_slot_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RescheduleRequest:
        """Propose a new start time for a confirmed session."""
        now = ensure_utc(now or utcnow())
        new_start = ensure_utc(new_start_time)
        text = validate_reason(reason)
        min_lead = settings.reschedule_min_lead_hours

        with self.transaction():
            session = self._get_session(session_id)
            self._counterpart(session, requested_by)
            if session.status != SessionStatus.CONFIRMED.value:
                raise InvalidTransitionException(
                    "Session",
                    session_id,
                    str(session.status),
                    SessionStatus.PENDING_RESCHEDULE.value,
                )
            current_lead = session.hours_until_start(now)
            if current_lead <= min_lead:
                raise InsufficientNoticeException("Reschedules", min_lead, current_lead)
            new_lead = (new_start - now).total_seconds() / 3600
            if new_lead < min_lead:
                raise InsufficientNoticeException("The new session time", min_lead, new_lead)
            if new_start == ensure_utc(session.scheduled_start_time):
                raise ValidationException(
                    "New start time matches the current one", code="SAME_START_TIME"
                )
            if self.reschedule_repository.get_pending_for_session(session_id) is not None:
                raise ConflictException(
                    "A reschedule request is already pending for this session",
                    code="RESCHEDULE_PENDING",
                    details={"session_id": session_id},
                )

            duration = int(session.duration_minutes)
            if new_time_slot_id is not None:
                slot = self.time_slot_repository.get_by_id(new_time_slot_id)
                if slot is None:
                    raise NotFoundException(
                        f"Time slot {new_time_slot_id} not found", code="TIME_SLOT_NOT_FOUND"
                    )
                if slot.is_booked:
                    raise SlotUnavailableException(new_time_slot_id)
                if slot.mentor_id != session.mentor_id:
                    raise ValidationException(
                        "Time slot does not belong to this session's mentor",
                        code="SLOT_MENTOR_MISMATCH",
                        details={"time_slot_id": new_time_slot_id},
                    )
                if ensure_utc(slot.start_time) != new_start:
                    raise ValidationException(
                        "Time slot does not start at the requested time",
                        code="SLOT_TIME_MISMATCH",
                        details={"time_slot_id": new_time_slot_id},
                    )
                duration = int(slot.duration_minutes)
            if self.session_repository.has_overlapping_session(
                str(session.mentee_id),
                new_start,
                new_start + timedelta(minutes=duration),
                exclude_session_id=session_id,
            ):
                raise ConflictException(
                    "The mentee already has a session at the new time",
                    code="OVERLAPPING_SESSION",
                )
            self._require_mentor_free(session, new_start, duration)

            expires_at = now + timedelta(hours=settings.reschedule_approval_timeout_hours)
            request = self.reschedule_repository.create(
                session_id=session_id,
                original_start_time=ensure_utc(session.scheduled_start_time),
                new_start_time=new_start,
                new_time_slot_id=new_time_slot_id,
                requested_by=requested_by,
                reason=text,
                status=RescheduleStatus.PENDING.value,
                expires_at=expires_at,
            )
            session.transition_to(SessionStatus.PENDING_RESCHEDULE)
            self.db.flush()
            request_id = str(request.id)
            self.scheduler.schedule(
                reschedule_expiry_job_key(request_id),
                JobType.RESCHEDULE_EXPIRY,
                expires_at,
                {"request_id": request_id},
            )

        self.log_operation("reschedule.request", session_id=session_id, request_id=request_id)
        return request

    @BaseService.measure_operation("reschedule.approve")
    def approve(
        self, request_id: str, approved_by: str, now: Optional[datetime] = None
    ) -> RescheduleRequest:
        """
        Move the session to the proposed time.

        If the proposed slot was taken in the meantime the approval fails
        with ``SlotUnavailableException`` and the request stays pending.
        The new time must still be outside the reschedule lead time. A
        proposal without a slot frees the session's old slot and needs the
        mentor to be free at the new time.
        """
        now = ensure_utc(now or utcnow())
        with self.transaction():
            request = self._get_request(request_id)
            self._require_pending(request, RescheduleStatus.APPROVED)
            session_id = str(request.session_id)
            session = self._get_session(session_id)
            if approved_by != self._counterpart(session, str(request.requested_by)):
                raise ForbiddenException(
                    "Only the other participant can approve a reschedule",
                    code="NOT_RESCHEDULE_APPROVER",
                )
            if request.expires_at is not None and now > ensure_utc(request.expires_at):
                raise BusinessRuleException(
                    "Reschedule request has expired",
                    code="RESCHEDULE_EXPIRED",
                    details={"request_id": request_id},
                )

            new_start = ensure_utc(request.new_start_time)
            min_lead = settings.reschedule_min_lead_hours
            new_lead = (new_start - now).total_seconds() / 3600
            if new_lead < min_lead:
                raise InsufficientNoticeException("The new session time", min_lead, new_lead)

            duration = int(session.duration_minutes)
            if request.new_time_slot_id:
                new_slot_id = str(request.new_time_slot_id)
                slot = self.time_slot_repository.get_by_id(new_slot_id, for_update=True)
                if slot is None or not self.time_slot_repository.try_book(new_slot_id, session_id):
                    raise SlotUnavailableException(new_slot_id)
                duration = int(slot.duration_minutes)
                if session.time_slot_id:
                    self.time_slot_repository.release(str(session.time_slot_id), session_id)
                session.time_slot_id = new_slot_id
            else:
                self._require_mentor_free(session, new_start, duration)
                if session.time_slot_id:
                    self.time_slot_repository.release(str(session.time_slot_id), session_id)
                session.time_slot_id = None

            session.scheduled_start_time = new_start
            session.scheduled_end_time = new_start + timedelta(minutes=duration)
            session.duration_minutes = duration
            session.transition_to(SessionStatus.CONFIRMED)
            request.status = RescheduleStatus.APPROVED.value
            request.resolved_by = approved_by
            request.resolved_at = now
            self.db.flush()

        self.log_operation("reschedule.approve", session_id=session_id, request_id=request_id)
        return request

    @BaseService.measure_operation("reschedule.reject")
    def reject(self, request_id: str, rejected_by: str) -> RescheduleRequest:
        with self.transaction():
            request = self._get_request(request_id)
            self._require_pending(request, RescheduleStatus.REJECTED)
            session = self._get_session(str(request.session_id))
            if rejected_by != self._counterpart(session, str(request.requested_by)):
                raise ForbiddenException(
                    "Only the other participant can reject a reschedule",
                    code="NOT_RESCHEDULE_APPROVER",
                )
            session.transition_to(SessionStatus.CONFIRMED)
            request.status = RescheduleStatus.REJECTED.value
            request.resolved_by = rejected_by
            request.resolved_at = utcnow()
            self.db.flush()
        return request

    def expire(self, request_id: str) -> bool:
        """Expire an unanswered request; False when it was already resolved."""
        with self.transaction():
            request = self.reschedule_repository.get_by_id(request_id, for_update=True)
            if request is None or not request.is_pending:
                return False
            session = self._get_session(str(request.session_id))
            if session.status == SessionStatus.PENDING_RESCHEDULE.value:
                session.transition_to(SessionStatus.CONFIRMED)
            request.status = RescheduleStatus.EXPIRED.value
            request.resolved_at = utcnow()
            self.db.flush()
        self.logger.info("Reschedule request %s expired", request_id)
        return True
