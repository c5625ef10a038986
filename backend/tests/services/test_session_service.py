"""Tests for SessionService booking, confirmation, cancellation and completion."""

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
from escrow.models.event_outbox import EventOutbox
from escrow.models.payment import PaymentStatus, RefundStatus
from escrow.models.scheduled_job import ScheduledJob
from escrow.models.mentorship_session import SessionStatus
from escrow.models.time_slot import TimeSlot
from escrow.services.job_scheduler import payment_timeout_job_key, release_job_key
from escrow.services.mentor_balance_ledger import MentorBalanceLedger
from tests.conftest import BASE_TIME, MENTEE_ID, MENTOR_ID, OTHER_MENTOR_ID

CANCEL_REASON = "Something came up at work"


def _job(db, key):
    return db.query(ScheduledJob).filter_by(job_key=key).one_or_none()


class TestBook:
    def test_book_creates_pending_session_and_payment(self, escrow, db):
        session = escrow.booked(price_cents=10000)
        slot = db.get(TimeSlot, session.time_slot_id)

        assert session.status == SessionStatus.PENDING.value
        assert slot.is_booked is True
        assert slot.session_id == session.id
        assert session.payment_id is not None
        job = _job(db, payment_timeout_job_key(session.id))
        assert ensure_utc(job.available_at) == BASE_TIME + timedelta(minutes=15)

    def test_booked_slot_is_unavailable(self, escrow):
        session = escrow.booked()
        with pytest.raises(SlotUnavailableException):
            escrow.sessions.book(
                mentee_id="01HMENTEE00000000000000002",
                mentor_id=MENTOR_ID,
                time_slot_id=session.time_slot_id,
                price_cents=10000,
                provider="stripe",
                now=BASE_TIME,
            )

    def test_past_slot_is_unavailable(self, escrow):
        slot = escrow.slot(start=BASE_TIME - timedelta(hours=1))
        with pytest.raises(SlotUnavailableException):
            escrow.sessions.book(MENTEE_ID, MENTOR_ID, slot.id, 10000, "stripe", now=BASE_TIME)

    def test_booking_needs_advance_notice(self, escrow):
        slot = escrow.slot(start=BASE_TIME + timedelta(hours=5))
        with pytest.raises(InsufficientNoticeException):
            escrow.sessions.book(MENTEE_ID, MENTOR_ID, slot.id, 10000, "stripe", now=BASE_TIME)

    def test_slot_must_belong_to_mentor(self, escrow):
        slot = escrow.slot(mentor_id=OTHER_MENTOR_ID)
        with pytest.raises(ValidationException):
            escrow.sessions.book(MENTEE_ID, MENTOR_ID, slot.id, 10000, "stripe", now=BASE_TIME)

    def test_mentor_cannot_book_self(self, escrow):
        slot = escrow.slot()
        with pytest.raises(ValidationException):
            escrow.sessions.book(MENTOR_ID, MENTOR_ID, slot.id, 10000, "stripe", now=BASE_TIME)

    def test_overlapping_booking_rejected(self, escrow, db):
        start = BASE_TIME + timedelta(days=3)
        escrow.booked(start=start)
        other_mentor_slot = escrow.slot(
            start=start + timedelta(minutes=30), mentor_id=OTHER_MENTOR_ID
        )
        with pytest.raises(ConflictException):
            escrow.sessions.book(
                MENTEE_ID, OTHER_MENTOR_ID, other_mentor_slot.id, 10000, "stripe", now=BASE_TIME
            )
        assert db.get(TimeSlot, other_mentor_slot.id).is_booked is False


class TestConfirmPayment:
    def test_confirm_requires_capture(self, escrow):
        session = escrow.booked()
        with pytest.raises(BusinessRuleException):
            escrow.sessions.confirm_payment(session.id)

    def test_confirm_after_capture_is_idempotent(self, escrow):
        session = escrow.booked()
        escrow.capture(session)

        assert escrow.sessions.confirm_payment(session.id).status == SessionStatus.CONFIRMED.value
        assert escrow.sessions.confirm_payment(session.id).status == SessionStatus.CONFIRMED.value

    def test_amount_mismatch_blocks_confirmation(self, escrow, db):
        session = escrow.booked(price_cents=10000)
        escrow.capture(session)
        session.price_cents = 12000
        db.commit()
        with pytest.raises(BusinessRuleException) as exc_info:
            escrow.sessions.confirm_payment(session.id)
        assert exc_info.value.code == "PAYMENT_AMOUNT_MISMATCH"


class TestCancel:
    def test_cancel_two_hours_before_start_refunds_nothing(self, escrow, db):
        session = escrow.confirmed(price_cents=10000)
        now = ensure_utc(session.scheduled_start_time) - timedelta(hours=2)

        cancellation = escrow.sessions.cancel(session.id, MENTEE_ID, "mentee", CANCEL_REASON, now=now)

        assert cancellation.refund_percentage == 0
        assert cancellation.refund_amount_cents == 0
        assert cancellation.refund_status == RefundStatus.NOT_REQUIRED.value
        assert escrow.sessions.get_cancellation(session.id).id == cancellation.id
        assert session.status == SessionStatus.CANCELLED.value
        slot = db.get(TimeSlot, session.time_slot_id)
        assert slot.is_booked is False
        assert slot.session_id is None
        payment = escrow.payments.get_payment(session.payment_id)
        assert payment.status == PaymentStatus.CAPTURED.value
        assert payment.is_refunded is False

    def test_cancel_with_long_notice_refunds_in_full(self, escrow):
        session = escrow.confirmed(price_cents=10000)
        now = ensure_utc(session.scheduled_start_time) - timedelta(hours=72)

        cancellation = escrow.sessions.cancel(session.id, MENTOR_ID, "mentor", CANCEL_REASON, now=now)

        assert cancellation.refund_percentage == 100
        payment = escrow.payments.get_payment(session.payment_id)
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.refund_amount_cents == 10000

    def test_cancel_inside_partial_window(self, escrow):
        session = escrow.confirmed(price_cents=10000)
        now = ensure_utc(session.scheduled_start_time) - timedelta(hours=30)

        cancellation = escrow.sessions.cancel(session.id, MENTEE_ID, "mentee", CANCEL_REASON, now=now)
        assert (cancellation.refund_percentage, cancellation.refund_amount_cents) == (50, 5000)

    def test_cancel_unpaid_session_voids_payment(self, escrow):
        session = escrow.booked()
        escrow.sessions.cancel(session.id, MENTEE_ID, "mentee", CANCEL_REASON, now=BASE_TIME)
        payment = escrow.payments.get_payment(session.payment_id)
        assert payment.status == PaymentStatus.CANCELLED.value

    def test_cancel_publishes_event(self, escrow, db):
        session = escrow.confirmed()
        escrow.sessions.cancel(session.id, MENTEE_ID, "mentee", CANCEL_REASON, now=BASE_TIME)
        events = db.query(EventOutbox).filter_by(aggregate_id=session.id).all()
        assert [event.event_type for event in events] == ["session_cancelled"]

    def test_short_reason_rejected(self, escrow):
        session = escrow.confirmed()
        with pytest.raises(ValidationException):
            escrow.sessions.cancel(session.id, MENTEE_ID, "mentee", "too short", now=BASE_TIME)
        assert session.status == SessionStatus.CONFIRMED.value

    def test_only_participants_cancel(self, escrow):
        session = escrow.confirmed()
        with pytest.raises(ForbiddenException):
            escrow.sessions.cancel(session.id, OTHER_MENTOR_ID, "mentor", CANCEL_REASON, now=BASE_TIME)

    def test_admin_may_cancel(self, escrow):
        session = escrow.confirmed()
        escrow.sessions.cancel(session.id, "01HADMIN000000000000000001", "admin", CANCEL_REASON, now=BASE_TIME)
        assert session.status == SessionStatus.CANCELLED.value

    def test_completed_session_cannot_be_cancelled(self, escrow):
        session = escrow.completed()
        with pytest.raises(InvalidTransitionException):
            escrow.sessions.cancel(session.id, MENTEE_ID, "mentee", CANCEL_REASON, now=BASE_TIME)
        assert escrow.sessions.can_cancel(session) is False


class TestStartAndComplete:
    def test_start_opens_shortly_before_scheduled_time(self, escrow):
        session = escrow.confirmed()
        start = ensure_utc(session.scheduled_start_time)

        with pytest.raises(BusinessRuleException):
            escrow.sessions.start(session.id, now=start - timedelta(minutes=30))
        started = escrow.sessions.start(session.id, now=start - timedelta(minutes=10))
        assert started.status == SessionStatus.IN_PROGRESS.value

    def test_complete_credits_pending_and_schedules_release(self, escrow, db):
        session = escrow.completed(price_cents=10000)
        payment = escrow.payments.get_payment(session.payment_id)
        balance = MentorBalanceLedger(db).get_balance(MENTOR_ID)

        assert session.status == SessionStatus.COMPLETED.value
        assert balance["pending_balance_cents"] == 8500
        assert balance["total_earnings_cents"] == 8500
        assert balance["available_balance_cents"] == 0
        expected_release = ensure_utc(session.completed_at) + timedelta(hours=72)
        assert ensure_utc(payment.payment_release_date) == expected_release
        job = _job(db, release_job_key(session.id))
        assert ensure_utc(job.available_at) == expected_release
        assert job.payload == {"session_id": session.id}

    def test_complete_before_scheduled_end_rejected(self, escrow):
        session = escrow.confirmed()
        with pytest.raises(BusinessRuleException):
            escrow.sessions.complete(session.id, now=ensure_utc(session.scheduled_start_time))

    def test_pending_session_cannot_complete(self, escrow):
        session = escrow.booked()
        with pytest.raises(InvalidTransitionException):
            escrow.sessions.complete(session.id, now=ensure_utc(session.scheduled_end_time))


class TestReleaseUnpaidSession:
    def test_unpaid_session_is_cancelled_and_slot_freed(self, escrow, db):
        session = escrow.booked()
        assert escrow.sessions.release_unpaid_session(session.id) is True

        assert session.status == SessionStatus.CANCELLED.value
        assert db.get(TimeSlot, session.time_slot_id).is_booked is False
        assert escrow.sessions.get_cancellation(session.id) is None
        payment = escrow.payments.get_payment(session.payment_id)
        assert payment.status == PaymentStatus.CANCELLED.value

    def test_paid_session_is_left_alone(self, escrow):
        session = escrow.confirmed()
        assert escrow.sessions.release_unpaid_session(session.id) is False
        assert session.status == SessionStatus.CONFIRMED.value

    def test_captured_but_unconfirmed_session_is_left_alone(self, escrow):
        session = escrow.booked()
        escrow.capture(session)
        assert escrow.sessions.release_unpaid_session(session.id) is False
        assert session.status == SessionStatus.PENDING.value


class TestPredicates:
    def test_can_reschedule_needs_lead_time(self, escrow):
        session = escrow.confirmed()
        start = ensure_utc(session.scheduled_start_time)
        assert escrow.sessions.can_reschedule(session, start - timedelta(hours=25)) is True
        assert escrow.sessions.can_reschedule(session, start - timedelta(hours=24)) is False

    def test_pending_session_cannot_reschedule(self, escrow):
        session = escrow.booked()
        assert escrow.sessions.can_reschedule(session, BASE_TIME) is False
