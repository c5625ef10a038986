from datetime import timedelta

import pytest

from escrow.core.exceptions import (
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    InsufficientNoticeException,
    InvalidTransitionException,
    SlotUnavailableException,
    ValidationException,
)
from escrow.core.timezone_utils import ensure_utc
from escrow.models.mentorship_session import SessionStatus
from escrow.models.reschedule_request import RescheduleStatus
from escrow.models.scheduled_job import ScheduledJob
from escrow.models.time_slot import TimeSlot
from escrow.services.job_scheduler import reschedule_expiry_job_key
from escrow.services.reschedule_service import RescheduleService
from tests.conftest import BASE_TIME, MENTEE_ID, MENTOR_ID, OTHER_MENTOR_ID

REASON = "Conflicting work meeting"
OTHER_MENTEE_ID = "01HMENTEE00000000000000002"


@pytest.fixture
def reschedules(db):
    return RescheduleService(db)


def _request_with_slot(escrow, reschedules, session, requested_by=MENTEE_ID):
    new_slot = escrow.slot(start=ensure_utc(session.scheduled_start_time) + timedelta(days=1))
    request = reschedules.request(
        session.id,
        requested_by,
        new_slot.start_time,
        REASON,
        new_time_slot_id=new_slot.id,
        now=BASE_TIME,
    )
    return request, new_slot


class TestRequest:
    def test_request_moves_session_to_pending_reschedule(self, escrow, reschedules, db):
        session = escrow.confirmed()
        request, _ = _request_with_slot(escrow, reschedules, session)

        assert request.status == RescheduleStatus.PENDING.value
        assert session.status == SessionStatus.PENDING_RESCHEDULE.value
        assert ensure_utc(request.expires_at) == BASE_TIME + timedelta(hours=48)
        job = db.query(ScheduledJob).filter_by(job_key=reschedule_expiry_job_key(request.id)).one()
        assert ensure_utc(job.available_at) == ensure_utc(request.expires_at)

    def test_request_without_slot(self, escrow, reschedules):
        session = escrow.confirmed()
        new_start = ensure_utc(session.scheduled_start_time) + timedelta(hours=3)

        request = reschedules.request(session.id, MENTOR_ID, new_start, REASON, now=BASE_TIME)
        assert request.new_time_slot_id is None

    def test_mentor_double_booking_rejected(self, escrow, reschedules):
        session = escrow.confirmed()
        other = escrow.confirmed(mentee_id=OTHER_MENTEE_ID)

        with pytest.raises(ConflictException) as exc_info:
            reschedules.request(
                session.id, MENTEE_ID, other.scheduled_start_time, REASON, now=BASE_TIME
            )

        assert exc_info.value.code == "MENTOR_UNAVAILABLE"
        assert session.status == SessionStatus.CONFIRMED.value

    def test_slot_booked_by_another_session_blocks_mentor(self, escrow, reschedules, db):
        session = escrow.confirmed()
        held = escrow.slot(start=ensure_utc(session.scheduled_start_time) + timedelta(days=2))
        held.is_booked = True
        held.session_id = "01HSESSION0000000000000009"
        db.commit()

        with pytest.raises(ConflictException) as exc_info:
            reschedules.request(
                session.id,
                MENTEE_ID,
                ensure_utc(held.start_time) + timedelta(minutes=30),
                REASON,
                now=BASE_TIME,
            )

        assert exc_info.value.code == "MENTOR_UNAVAILABLE"

    def test_only_confirmed_sessions(self, escrow, reschedules):
        session = escrow.booked()
        with pytest.raises(InvalidTransitionException):
            reschedules.request(
                session.id, MENTEE_ID, BASE_TIME + timedelta(days=9), REASON, now=BASE_TIME
            )

    def test_needs_lead_time_before_current_start(self, escrow, reschedules):
        session = escrow.confirmed()
        now = ensure_utc(session.scheduled_start_time) - timedelta(hours=10)
        with pytest.raises(InsufficientNoticeException):
            reschedules.request(
                session.id, MENTEE_ID, now + timedelta(days=3), REASON, now=now
            )

    def test_new_time_needs_lead_time(self, escrow, reschedules):
        session = escrow.confirmed()
        with pytest.raises(InsufficientNoticeException):
            reschedules.request(
                session.id, MENTEE_ID, BASE_TIME + timedelta(hours=3), REASON, now=BASE_TIME
            )

    def test_same_start_rejected(self, escrow, reschedules):
        session = escrow.confirmed()
        with pytest.raises(ValidationException):
            reschedules.request(
                session.id, MENTEE_ID, session.scheduled_start_time, REASON, now=BASE_TIME
            )

    def test_outsider_cannot_request(self, escrow, reschedules):
        session = escrow.confirmed()
        with pytest.raises(ForbiddenException):
            reschedules.request(
                session.id, OTHER_MENTOR_ID, BASE_TIME + timedelta(days=9), REASON, now=BASE_TIME
            )

    def test_slot_from_other_mentor_rejected(self, escrow, reschedules):
        session = escrow.confirmed()
        slot = escrow.slot(start=BASE_TIME + timedelta(days=9), mentor_id=OTHER_MENTOR_ID)
        with pytest.raises(ValidationException):
            reschedules.request(
                session.id, MENTEE_ID, slot.start_time, REASON, new_time_slot_id=slot.id, now=BASE_TIME
            )

    def test_one_pending_request_per_session(self, escrow, reschedules):
        session = escrow.confirmed()
        _request_with_slot(escrow, reschedules, session)
        with pytest.raises(InvalidTransitionException):
            reschedules.request(
                session.id, MENTOR_ID, BASE_TIME + timedelta(days=12), REASON, now=BASE_TIME
            )


class TestApprove:
    def test_approve_moves_session_to_new_slot(self, escrow, reschedules, db):
        session = escrow.confirmed()
        old_slot_id = session.time_slot_id
        request, new_slot = _request_with_slot(escrow, reschedules, session)

        reschedules.approve(request.id, MENTOR_ID, now=BASE_TIME + timedelta(hours=1))

        assert request.status == RescheduleStatus.APPROVED.value
        assert session.status == SessionStatus.CONFIRMED.value
        assert session.time_slot_id == new_slot.id
        assert ensure_utc(session.scheduled_start_time) == ensure_utc(new_slot.start_time)
        assert ensure_utc(session.scheduled_end_time) == new_slot.end_time
        assert db.get(TimeSlot, old_slot_id).is_booked is False
        assert db.get(TimeSlot, new_slot.id).session_id == session.id

    def test_approve_without_slot_frees_old_slot(self, escrow, reschedules, db):
        session = escrow.confirmed()
        old_slot_id = session.time_slot_id
        new_start = ensure_utc(session.scheduled_start_time) + timedelta(hours=3)
        request = reschedules.request(session.id, MENTOR_ID, new_start, REASON, now=BASE_TIME)

        reschedules.approve(request.id, MENTEE_ID, now=BASE_TIME + timedelta(hours=1))

        assert session.status == SessionStatus.CONFIRMED.value
        assert session.time_slot_id is None
        assert ensure_utc(session.scheduled_start_time) == new_start
        assert ensure_utc(session.scheduled_end_time) == new_start + timedelta(minutes=60)
        old_slot = db.get(TimeSlot, old_slot_id)
        assert old_slot.is_booked is False
        assert old_slot.session_id is None

    def test_mentor_booked_meanwhile_blocks_approval(self, escrow, reschedules):
        session = escrow.confirmed()
        new_start = ensure_utc(session.scheduled_start_time) + timedelta(days=1)
        request = reschedules.request(session.id, MENTEE_ID, new_start, REASON, now=BASE_TIME)
        escrow.confirmed(start=new_start, mentee_id=OTHER_MENTEE_ID)

        with pytest.raises(ConflictException) as exc_info:
            reschedules.approve(request.id, MENTOR_ID, now=BASE_TIME + timedelta(hours=1))

        assert exc_info.value.code == "MENTOR_UNAVAILABLE"
        assert request.status == RescheduleStatus.PENDING.value
        assert session.status == SessionStatus.PENDING_RESCHEDULE.value

    def test_approval_inside_lead_time_rejected(self, escrow, reschedules):
        session = escrow.confirmed()
        original_start = ensure_utc(session.scheduled_start_time)
        new_start = BASE_TIME + timedelta(hours=25)
        request = reschedules.request(session.id, MENTEE_ID, new_start, REASON, now=BASE_TIME)

        with pytest.raises(InsufficientNoticeException):
            reschedules.approve(request.id, MENTOR_ID, now=BASE_TIME + timedelta(hours=2))

        assert request.status == RescheduleStatus.PENDING.value
        assert ensure_utc(session.scheduled_start_time) == original_start

    def test_requester_cannot_approve_own_request(self, escrow, reschedules):
        session = escrow.confirmed()
        request, _ = _request_with_slot(escrow, reschedules, session)
        with pytest.raises(ForbiddenException):
            reschedules.approve(request.id, MENTEE_ID, now=BASE_TIME)

    def test_expired_request_cannot_be_approved(self, escrow, reschedules):
        session = escrow.confirmed()
        request, _ = _request_with_slot(escrow, reschedules, session)
        with pytest.raises(BusinessRuleException):
            reschedules.approve(request.id, MENTOR_ID, now=BASE_TIME + timedelta(hours=49))

    def test_taken_slot_keeps_request_pending(self, escrow, reschedules):
        session = escrow.confirmed()
        request, new_slot = _request_with_slot(escrow, reschedules, session)
        escrow.sessions.book(
            OTHER_MENTEE_ID, MENTOR_ID, new_slot.id, 10000, "stripe", now=BASE_TIME
        )

        with pytest.raises(SlotUnavailableException):
            reschedules.approve(request.id, MENTOR_ID, now=BASE_TIME)

        assert request.status == RescheduleStatus.PENDING.value
        assert session.status == SessionStatus.PENDING_RESCHEDULE.value


class TestRejectAndExpire:
    def test_reject_restores_confirmed(self, escrow, reschedules):
        session = escrow.confirmed()
        original_start = ensure_utc(session.scheduled_start_time)
        request, _ = _request_with_slot(escrow, reschedules, session)

        reschedules.reject(request.id, MENTOR_ID)

        assert request.status == RescheduleStatus.REJECTED.value
        assert session.status == SessionStatus.CONFIRMED.value
        assert ensure_utc(session.scheduled_start_time) == original_start

    def test_expire_restores_confirmed_once(self, escrow, reschedules):
        session = escrow.confirmed()
        request, _ = _request_with_slot(escrow, reschedules, session)

        assert reschedules.expire(request.id) is True
        assert request.status == RescheduleStatus.EXPIRED.value
        assert session.status == SessionStatus.CONFIRMED.value
        assert reschedules.expire(request.id) is False

    def test_resolved_request_is_final(self, escrow, reschedules):
        session = escrow.confirmed()
        request, _ = _request_with_slot(escrow, reschedules, session)
        reschedules.reject(request.id, MENTOR_ID)

        with pytest.raises(InvalidTransitionException):
            reschedules.approve(request.id, MENTOR_ID, now=BASE_TIME)

    def test_cancelling_session_rejects_pending_request(self, escrow, reschedules):
        session = escrow.confirmed()
        request, _ = _request_with_slot(escrow, reschedules, session)

        escrow.sessions.cancel(session.id, MENTEE_ID, "mentee", "Plans changed entirely", now=BASE_TIME)

        assert request.status == RescheduleStatus.REJECTED.value
        assert session.status == SessionStatus.CANCELLED.value
