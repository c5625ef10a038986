"""
Dispute guard.

An open dispute (``pending`` or ``under_review``) blocks release of the
session's escrowed funds. Resolving the dispute is the only way to resume:
refunds go through the payment and balance ledgers, and any remaining payout
is queued for release again.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    AlreadyReleasedException,
    BusinessRuleException,
    DuplicateDisputeException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utcnow
from ..events import DisputeResolved, EventPublisher
from ..models.mentorship_session import MentorshipSession, SessionStatus
from ..models.payment import Payment
from ..models.scheduled_job import JobType
from ..models.session_dispute import (
    DisputeReason,
    DisputeResolution,
    DisputeStatus,
    SessionDispute,
)
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .job_scheduler import JobScheduler, release_job_key
from .mentor_balance_ledger import MentorBalanceLedger
from .payment_ledger import PaymentLedger
from .refund_policy import RefundQuote, quote_for_amount

DESCRIPTION_MAX_LENGTH = 1000


class DisputeGuard(BaseService):
    def __init__(
        self,
        db: Session,
        payment_ledger: Optional[PaymentLedger] = None,
        balance_ledger: Optional[MentorBalanceLedger] = None,
        scheduler: Optional[JobScheduler] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        super().__init__(db)
        self.dispute_repository = RepositoryFactory.create_dispute_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.payment_ledger = payment_ledger or PaymentLedger(db)
        self.balance_ledger = balance_ledger or MentorBalanceLedger(db)
        self.scheduler = scheduler or JobScheduler(db)
        self.publisher = publisher or EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    def has_active_dispute(self, session_id: str) -> bool:
        return self.dispute_repository.has_active_for_session(session_id)

    def get_active(self, session_id: str) -> Optional[SessionDispute]:
        return self.dispute_repository.get_active_for_session(session_id)

    def _get_dispute(self, dispute_id: str) -> SessionDispute:
        dispute = self.dispute_repository.get_by_id(dispute_id, for_update=True)
        if dispute is None:
            raise NotFoundException(f"Dispute {dispute_id} not found", code="DISPUTE_NOT_FOUND")
        return dispute

    def _get_session(self, session_id: str) -> MentorshipSession:
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            raise NotFoundException(f"Session {session_id} not found", code="SESSION_NOT_FOUND")
        return session

    @staticmethod
    def _validate_description(reason: DisputeReason, description: Optional[str]) -> Optional[str]:
        text = (description or "").strip() or None
        if reason == DisputeReason.OTHER and text is None:
            raise ValidationException(
                "Description is required when reason is 'other'", code="DESCRIPTION_REQUIRED"
            )
        if text is not None and len(text) > DESCRIPTION_MAX_LENGTH:
            raise ValidationException(
                f"Description cannot exceed {DESCRIPTION_MAX_LENGTH} characters",
                code="DESCRIPTION_TOO_LONG",
            )
        return text

    @BaseService.measure_operation("dispute.open")
    def open(
        self,
        session_id: str,
        mentee_id: str,
        reason: DisputeReason | str,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SessionDispute:
        """Open a dispute on a completed session, holding its payout in escrow."""
        now = ensure_utc(now or utcnow())
        try:
            reason = DisputeReason(reason)
        except ValueError as exc:
            raise ValidationException(
                f"Unknown dispute reason: {reason}", code="INVALID_DISPUTE_REASON"
            ) from exc
        text = self._validate_description(reason, description)

        with self.transaction():
            session = self._get_session(session_id)
            if session.mentee_id != mentee_id:
                raise ForbiddenException(
                    "Only the session's mentee can open a dispute", code="NOT_SESSION_MENTEE"
                )
            if session.status != SessionStatus.COMPLETED.value or session.completed_at is None:
                raise BusinessRuleException(
                    "Disputes can only be opened for completed sessions",
                    code="SESSION_NOT_COMPLETED",
                    details={"session_id": session_id, "status": session.status},
                )
            window_closes = ensure_utc(session.completed_at) + timedelta(
                hours=settings.dispute_window_hours
            )
            if now > window_closes:
                raise BusinessRuleException(
                    "The dispute window for this session has closed",
                    code="DISPUTE_WINDOW_CLOSED",
                    details={"session_id": session_id, "closed_at": window_closes.isoformat()},
                )
            # Serializes with the release worker, which locks the same row.
            payment = self.payment_ledger.get_for_session(session_id, for_update=True)
            if payment is not None and payment.is_released_to_mentor:
                raise AlreadyReleasedException(str(payment.id))
            if self.dispute_repository.has_active_for_session(session_id):
                raise DuplicateDisputeException(session_id)

            dispute = self.dispute_repository.create(
                session_id=session_id,
                mentee_id=mentee_id,
                reason=reason.value,
                description=text,
                status=DisputeStatus.PENDING.value,
            )

        self.logger.info(
            "Dispute opened",
            extra={"dispute_id": dispute.id, "session_id": session_id, "reason": reason.value},
        )
        return dispute

    @BaseService.measure_operation("dispute.start_review")
    def start_review(self, dispute_id: str) -> SessionDispute:
        with self.transaction():
            dispute = self._get_dispute(dispute_id)
            if dispute.status != DisputeStatus.PENDING.value:
                raise InvalidTransitionException(
                    "Dispute", dispute_id, str(dispute.status), DisputeStatus.UNDER_REVIEW.value
                )
            dispute.status = DisputeStatus.UNDER_REVIEW.value
            self.db.flush()
        return dispute

    def _quote(
        self,
        resolution: DisputeResolution,
        payment: Payment,
        refund_amount_cents: Optional[int],
    ) -> RefundQuote:
        amount = int(payment.amount_cents)
        if resolution == DisputeResolution.FULL_REFUND:
            if refund_amount_cents not in (None, amount):
                raise ValidationException(
                    "A full refund must cover the whole payment", code="INVALID_REFUND_AMOUNT"
                )
            return quote_for_amount(amount, amount)
        if refund_amount_cents is None:
            raise ValidationException(
                "Refund amount is required for a partial refund", code="REFUND_AMOUNT_REQUIRED"
            )
        if refund_amount_cents >= amount:
            raise ValidationException(
                "A partial refund must be less than the payment amount",
                code="INVALID_REFUND_AMOUNT",
            )
        return quote_for_amount(amount, refund_amount_cents)

    @BaseService.measure_operation("dispute.resolve")
    def resolve(
        self,
        dispute_id: str,
        resolution: DisputeResolution | str,
        resolved_by: str,
        refund_amount_cents: Optional[int] = None,
        admin_notes: Optional[str] = None,
    ) -> SessionDispute:
        """
        Close a dispute.

        ``no_refund`` rejects the dispute; either refund resolution applies
        the refund before the remaining payout is released. Whatever is still
        owed to the mentor is queued for release at the later of now and the
        original release date.
        """
        resolution = DisputeResolution(resolution)
        now = utcnow()

        with self.transaction():
            dispute = self._get_dispute(dispute_id)
            if not dispute.is_active:
                target = (
                    DisputeStatus.REJECTED
                    if resolution == DisputeResolution.NO_REFUND
                    else DisputeStatus.RESOLVED
                )
                raise InvalidTransitionException(
                    "Dispute", dispute_id, str(dispute.status), target.value
                )
            session_id = str(dispute.session_id)
            session = self._get_session(session_id)
            payment = self.payment_ledger.get_for_session(session_id)
            if payment is None:
                raise NotFoundException(
                    f"Payment for session {session_id} not found", code="PAYMENT_NOT_FOUND"
                )

            refunded = 0
            if resolution == DisputeResolution.NO_REFUND:
                dispute.status = DisputeStatus.REJECTED.value
            else:
                quote = self._quote(resolution, payment, refund_amount_cents)
                self.payment_ledger.apply_refund(
                    payment, quote.percentage, quote.refund_amount_cents
                )
                self.balance_ledger.reverse_pending(
                    str(session.mentor_id), payment.mentor_refund_share_cents
                )
                refunded = quote.refund_amount_cents
                dispute.status = DisputeStatus.RESOLVED.value

            dispute.resolution = resolution.value
            dispute.refund_amount_cents = refunded
            dispute.admin_notes = admin_notes
            dispute.resolved_by = resolved_by
            dispute.resolved_at = now
            self.db.flush()

            if payment.releasable_amount_cents > 0 and not payment.is_released_to_mentor:
                release_at = now
                if payment.payment_release_date is not None:
                    release_at = max(now, ensure_utc(payment.payment_release_date))
                self.scheduler.schedule(
                    release_job_key(session_id),
                    JobType.PAYMENT_RELEASE,
                    release_at,
                    {"session_id": session_id},
                )

            self.publisher.publish(
                DisputeResolved(
                    dispute_id=str(dispute.id),
                    session_id=session_id,
                    resolution=resolution.value,
                    refund_amount_cents=refunded,
                )
            )

        self.logger.info(
            "Dispute resolved",
            extra={
                "dispute_id": dispute_id,
                "session_id": session_id,
                "resolution": resolution.value,
                "refund_amount_cents": refunded,
            },
        )
        return dispute
