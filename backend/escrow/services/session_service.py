"""
Session service.

Owns the session lifecycle from booking to completion or cancellation. Each
operation runs in one scoped transaction together with the payment, slot and
balance changes it implies, so a session is never confirmed without a captured
payment or completed without its payout credited to pending.
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
from ..events import EventPublisher, SessionCancelled
from ..models.mentorship_session import MentorshipSession, SessionStatus
from ..models.payment import Payment, PaymentProvider, PaymentStatus, RefundStatus
from ..models.reschedule_request import RescheduleStatus
from ..models.scheduled_job import JobType
from ..models.session_cancellation import CancelledByRole, SessionCancellation
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .job_scheduler import JobScheduler, payment_timeout_job_key, release_job_key
from .mentor_balance_ledger import MentorBalanceLedger
from .payment_ledger import PaymentLedger
from .refund_policy import RefundPolicy, RefundQuote, calculate_refund

REASON_MIN_LENGTH = 10
REASON_MAX_LENGTH = 500
SYSTEM_ACTOR = "system"


def validate_reason(reason: Optional[str]) -> str:
    """Cancellation and reschedule reasons are 10 to 500 characters."""
    text = (reason or "").strip()
    if not REASON_MIN_LENGTH <= len(text) <= REASON_MAX_LENGTH:
        raise ValidationException(
            f"Reason must be between {REASON_MIN_LENGTH} and {REASON_MAX_LENGTH} characters",
            code="INVALID_REASON",
            details={"length": len(text)},
        )
    return text


class SessionService(BaseService):
    """Booking, payment confirmation, cancellation, start and completion."""

    def __init__(
        self,
        db: Session,
        payment_ledger: Optional[PaymentLedger] = None,
        balance_ledger: Optional[MentorBalanceLedger] = None,
        scheduler: Optional[JobScheduler] = None,
        publisher: Optional[EventPublisher] = None,
        refund_policy: Optional[RefundPolicy] = None,
    ):
        super().__init__(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.time_slot_repository = RepositoryFactory.create_time_slot_repository(db)
        self.reschedule_repository = RepositoryFactory.create_reschedule_repository(db)
        self.cancellation_repository = RepositoryFactory.create_cancellation_repository(db)
        self.payment_ledger = payment_ledger or PaymentLedger(db)
        self.balance_ledger = balance_ledger or MentorBalanceLedger(db)
        self.scheduler = scheduler or JobScheduler(db)
        self.publisher = publisher or EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )
        self.refund_policy = refund_policy

    def get_session(self, session_id: str, for_update: bool = False) -> MentorshipSession:
        session = self.session_repository.get_by_id(session_id, for_update=for_update)
        if session is None:
            raise NotFoundException(f"Session {session_id} not found", code="SESSION_NOT_FOUND")
        return session

    def get_cancellation(self, session_id: str) -> Optional[SessionCancellation]:
        return self.cancellation_repository.get_by_session_id(session_id)

    def _payment_for(self, session: MentorshipSession) -> Optional[Payment]:
        if not session.payment_id:
            return None
        return self.payment_ledger.get_payment(str(session.payment_id), for_update=True)

    # Predicates

    @staticmethod
    def can_reschedule(session: MentorshipSession, now: Optional[datetime] = None) -> bool:
        if session.status != SessionStatus.CONFIRMED.value:
            return False
        return session.hours_until_start(now or utcnow()) > settings.reschedule_min_lead_hours

    @staticmethod
    def can_cancel(session: MentorshipSession) -> bool:
        return session.is_cancellable

    # Booking

    @BaseService.measure_operation("session.book")
    def book(
        self,
        mentee_id: str,
        mentor_id: str,
        time_slot_id: str,
        price_cents: int,
        provider: PaymentProvider | str,
        topic: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> MentorshipSession:
        """
        Book a slot and open its pending payment.

        The slot is claimed with a guarded update, so two mentees racing for
        the same slot cannot both succeed. An unpaid booking is released after
        ``payment_expiration_minutes``.
        """
        now = ensure_utc(now or utcnow())
        if mentee_id == mentor_id:
            raise ValidationException("Mentors cannot book their own sessions", code="SELF_BOOKING")
        if price_cents <= 0:
            raise ValidationException("Session price must be positive", code="INVALID_PRICE")

        with self.transaction():
            slot = self.time_slot_repository.get_by_id(time_slot_id, for_update=True)
            if slot is None:
                raise NotFoundException(
                    f"Time slot {time_slot_id} not found", code="TIME_SLOT_NOT_FOUND"
                )
            if slot.mentor_id != mentor_id:
                raise ValidationException(
                    "Time slot does not belong to this mentor",
                    code="SLOT_MENTOR_MISMATCH",
                    details={"time_slot_id": time_slot_id},
                )
            if slot.is_booked:
                raise SlotUnavailableException(time_slot_id)
            start = ensure_utc(slot.start_time)
            if start <= now:
                raise SlotUnavailableException(time_slot_id, reason="Time slot is in the past")
            lead_hours = (start - now).total_seconds() / 3600
            if lead_hours < settings.booking_min_advance_hours:
                raise InsufficientNoticeException(
                    "Bookings", settings.booking_min_advance_hours, lead_hours
                )
            end = slot.end_time
            if self.session_repository.has_overlapping_session(mentee_id, start, end):
                raise ConflictException(
                    "You already have a session at this time",
                    code="OVERLAPPING_SESSION",
                    details={"mentee_id": mentee_id},
                )

            session = self.session_repository.create(
                mentee_id=mentee_id,
                mentor_id=mentor_id,
                time_slot_id=slot.id,
                duration_minutes=slot.duration_minutes,
                scheduled_start_time=start,
                scheduled_end_time=end,
                status=SessionStatus.PENDING.value,
                price_cents=price_cents,
                topic=topic,
                notes=notes,
            )
            if not self.time_slot_repository.try_book(str(slot.id), str(session.id)):
                raise SlotUnavailableException(time_slot_id)
            self.payment_ledger.create_pending(session, provider, price_cents)
            session_id = str(session.id)
            self.scheduler.schedule(
                payment_timeout_job_key(session_id),
                JobType.PAYMENT_TIMEOUT,
                now + timedelta(minutes=settings.payment_expiration_minutes),
                {"session_id": session_id},
            )

        self.log_operation(
            "session.book", session_id=session.id, mentor_id=mentor_id, mentee_id=mentee_id
        )
        return session

    @BaseService.measure_operation("session.confirm_payment")
    def confirm_payment(self, session_id: str) -> MentorshipSession:
        """Confirm a pending session once its payment is captured; repeats are no-ops."""
        with self.transaction():
            session = self.get_session(session_id, for_update=True)
            if session.status == SessionStatus.CONFIRMED.value:
                return session
            if session.status != SessionStatus.PENDING.value:
                raise InvalidTransitionException(
                    "Session", session_id, str(session.status), SessionStatus.CONFIRMED.value
                )
            payment = self._payment_for(session)
            if payment is None or payment.status != PaymentStatus.CAPTURED.value:
                raise BusinessRuleException(
                    "Payment has not been captured",
                    code="PAYMENT_NOT_CAPTURED",
                    details={"session_id": session_id},
                )
            if int(payment.amount_cents) != int(session.price_cents):
                raise BusinessRuleException(
                    "Captured amount does not match the session price",
                    code="PAYMENT_AMOUNT_MISMATCH",
                    details={
                        "session_id": session_id,
                        "price_cents": session.price_cents,
                        "amount_cents": payment.amount_cents,
                    },
                )
            session.transition_to(SessionStatus.CONFIRMED)
            self.db.flush()
        return session

    # Cancellation

    def _check_participant(
        self, session: MentorshipSession, user_id: str, role: CancelledByRole
    ) -> None:
        if role == CancelledByRole.ADMIN:
            return
        owner = session.mentee_id if role == CancelledByRole.MENTEE else session.mentor_id
        if owner != user_id:
            raise ForbiddenException(
                "Only a participant of this session can do that", code="NOT_SESSION_PARTICIPANT"
            )

    @BaseService.measure_operation("session.cancel")
    def cancel(
        self,
        session_id: str,
        cancelled_by: str,
        role: CancelledByRole | str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> SessionCancellation:
        """
        Cancel a session and refund according to the lead-time policy.

        Captured payments are refunded by tier; payments that never captured
        are voided. The slot is freed and any pending reschedule is rejected.
        """
        now = ensure_utc(now or utcnow())
        role = CancelledByRole(role)
        text = validate_reason(reason)

        with self.transaction():
            session = self.get_session(session_id, for_update=True)
            self._check_participant(session, cancelled_by, role)
            if not self.can_cancel(session):
                raise InvalidTransitionException(
                    "Session", session_id, str(session.status), SessionStatus.CANCELLED.value
                )

            payment = self._payment_for(session)
            quote = RefundQuote(percentage=0, refund_amount_cents=0)
            refund_status = RefundStatus.NOT_REQUIRED
            if payment is not None and payment.status == PaymentStatus.CAPTURED.value:
                quote = calculate_refund(
                    now,
                    ensure_utc(session.scheduled_start_time),
                    int(payment.amount_cents),
                    self.refund_policy,
                )
                if quote.is_refundable:
                    self.payment_ledger.apply_refund(
                        payment, quote.percentage, quote.refund_amount_cents
                    )
                    refund_status = RefundStatus.COMPLETED
            elif payment is not None:
                self.payment_ledger.cancel_payment(payment)

            pending_request = self.reschedule_repository.get_pending_for_session(session_id)
            if pending_request is not None:
                pending_request.status = RescheduleStatus.REJECTED.value
                pending_request.resolved_by = cancelled_by
                pending_request.resolved_at = now

            session.cancel(text, now)
            if session.time_slot_id:
                self.time_slot_repository.release(str(session.time_slot_id), session_id)

            cancellation = self.cancellation_repository.create(
                session_id=session_id,
                reason=text,
                cancelled_by=cancelled_by,
                cancelled_by_role=role.value,
                refund_amount_cents=quote.refund_amount_cents,
                refund_percentage=quote.percentage,
                refund_status=refund_status.value,
            )
            self.publisher.publish(
                SessionCancelled(
                    session_id=session_id,
                    cancelled_by=cancelled_by,
                    cancelled_by_role=role.value,
                    cancelled_at=now,
                    refund_amount_cents=quote.refund_amount_cents,
                    refund_percentage=quote.percentage,
                )
            )

        self.logger.info(
            "Session cancelled",
            extra={
                "session_id": session_id,
                "role": role.value,
                "refund_percentage": quote.percentage,
                "refund_amount_cents": quote.refund_amount_cents,
            },
        )
        return cancellation

    @BaseService.measure_operation("session.release_unpaid")
    def release_unpaid_session(self, session_id: str) -> bool:
        """
        Cancel a booking whose payment never arrived and free its slot.

        Returns False without changes when the session has moved on.
        """
        now = utcnow()
        with self.transaction():
            session = self.session_repository.get_by_id(session_id, for_update=True)
            if session is None or session.status != SessionStatus.PENDING.value:
                return False
            payment = self._payment_for(session)
            if payment is not None:
                if payment.status not in (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value):
                    return False
                self.payment_ledger.cancel_payment(payment)

            session.cancel("Payment was not completed in time", now)
            if session.time_slot_id:
                self.time_slot_repository.release(str(session.time_slot_id), session_id)
            self.publisher.publish(
                SessionCancelled(
                    session_id=session_id,
                    cancelled_by=SYSTEM_ACTOR,
                    cancelled_by_role=SYSTEM_ACTOR,
                    cancelled_at=now,
                )
            )

        self.logger.info("Released unpaid session %s", session_id)
        return True

    # Running the session

    @BaseService.measure_operation("session.start")
    def start(self, session_id: str, now: Optional[datetime] = None) -> MentorshipSession:
        now = ensure_utc(now or utcnow())
        with self.transaction():
            session = self.get_session(session_id, for_update=True)
            opens_at = ensure_utc(session.scheduled_start_time) - timedelta(
                minutes=settings.session_join_window_minutes
            )
            if session.status == SessionStatus.CONFIRMED.value and now < opens_at:
                raise BusinessRuleException(
                    "Session cannot start yet",
                    code="SESSION_NOT_STARTED",
                    details={"opens_at": opens_at.isoformat()},
                )
            session.transition_to(SessionStatus.IN_PROGRESS)
            session.started_at = now
            self.db.flush()
        return session

    @BaseService.measure_operation("session.complete")
    def complete(self, session_id: str, now: Optional[datetime] = None) -> MentorshipSession:
        """
        Complete a session and hold the mentor's payout in escrow.

        The payout is credited to pending balance and the release job is
        scheduled for the end of the holding period.
        """
        now = ensure_utc(now or utcnow())
        with self.transaction():
            session = self.get_session(session_id, for_update=True)
            if session.status not in (
                SessionStatus.CONFIRMED.value,
                SessionStatus.IN_PROGRESS.value,
            ):
                raise InvalidTransitionException(
                    "Session", session_id, str(session.status), SessionStatus.COMPLETED.value
                )
            if now < ensure_utc(session.scheduled_end_time):
                raise BusinessRuleException(
                    "Session cannot be completed before its scheduled end",
                    code="SESSION_NOT_ENDED",
                    details={"session_id": session_id},
                )
            payment = self._payment_for(session)
            if payment is None or payment.status != PaymentStatus.CAPTURED.value:
                raise BusinessRuleException(
                    "Completed sessions require a captured payment",
                    code="PAYMENT_NOT_CAPTURED",
                    details={"session_id": session_id},
                )

            session.complete(now)
            self.balance_ledger.credit_pending(
                str(session.mentor_id), int(payment.mentor_payout_amount_cents)
            )
            release_at = now + timedelta(hours=settings.holding_period_hours)
            payment.payment_release_date = release_at
            self.db.flush()
            self.scheduler.schedule(
                release_job_key(session_id),
                JobType.PAYMENT_RELEASE,
                release_at,
                {"session_id": session_id},
            )

        self.logger.info(
            "Session completed",
            extra={
                "session_id": session_id,
                "mentor_id": session.mentor_id,
                "payment_release_date": release_at.isoformat(),
            },
        )
        return session
