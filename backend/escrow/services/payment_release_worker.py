"""
Payment release worker.

Runs when a completed session's holding period ends and moves the mentor's
share of the payment from pending to available balance. Safe to run more than
once for the same session: only the first run that flips the payment's
released flag moves money.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from ..core.exceptions import (
    AlreadyReleasedException,
    InsufficientPendingBalanceException,
    ReleaseIntegrityException,
)
from ..core.timezone_utils import utcnow
from ..events import EventPublisher, PaymentReleased, ReleaseBlockedByDispute
from ..models.mentorship_session import SessionStatus
from ..models.payment import PaymentStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .dispute_guard import DisputeGuard
from .mentor_balance_ledger import MentorBalanceLedger
from .payment_ledger import PaymentLedger

_RELEASABLE_PAYMENT_STATUSES = (PaymentStatus.CAPTURED.value, PaymentStatus.REFUNDED.value)


class ReleaseOutcome(str, Enum):
    BLOCKED = "blocked"
    ALREADY_RELEASED = "already_released"
    NOTHING_TO_RELEASE = "nothing_to_release"
    RELEASED = "released"


class PaymentReleaseWorker(BaseService):
    def __init__(
        self,
        db: Session,
        payment_ledger: PaymentLedger,
        balance_ledger: MentorBalanceLedger,
        dispute_guard: DisputeGuard,
        publisher: EventPublisher,
    ):
        super().__init__(db)
        self.payment_ledger = payment_ledger
        self.balance_ledger = balance_ledger
        self.dispute_guard = dispute_guard
        self.publisher = publisher
        self.session_repository = RepositoryFactory.create_session_repository(db)

    def _finish(self, outcome: ReleaseOutcome, session_id: str) -> ReleaseOutcome:
        prometheus_metrics.record_release(outcome.value)
        self.logger.info(
            "Payment release finished",
            extra={"session_id": session_id, "outcome": outcome.value},
        )
        return outcome

    @BaseService.measure_operation("payment.release")
    def execute(self, session_id: str, now: Optional[datetime] = None) -> ReleaseOutcome:
        """
        Release escrowed funds for ``session_id``.

        The dispute check, the release flag and the balance move all happen
        under the payment's row lock, which ``DisputeGuard.open`` also takes,
        so a dispute cannot slip in between the check and the release.

        Integrity errors (missing rows, pending balance short of the payout)
        propagate and must not be retried. Any other failure rolls back the
        whole release and propagates so the scheduler can retry it.
        """
        released_at = now or utcnow()
        try:
            with self.transaction():
                session = self.session_repository.get_by_id(session_id)
                if session is None:
                    raise ReleaseIntegrityException(
                        "Session not found for release", session_id=session_id
                    )
                if session.status != SessionStatus.COMPLETED.value:
                    raise ReleaseIntegrityException(
                        f"Session is {session.status}, not completed", session_id=session_id
                    )
                if not session.payment_id:
                    raise ReleaseIntegrityException("Session has no payment", session_id=session_id)
                payment = self.payment_ledger.payment_repository.get_by_id(
                    str(session.payment_id), for_update=True
                )
                if payment is None:
                    raise ReleaseIntegrityException(
                        "Payment not found for release", session_id=session_id
                    )
                if payment.is_released_to_mentor:
                    return self._finish(ReleaseOutcome.ALREADY_RELEASED, session_id)

                dispute = self.dispute_guard.get_active(session_id)
                if dispute is not None:
                    self.publisher.publish(
                        ReleaseBlockedByDispute(session_id=session_id, dispute_id=str(dispute.id))
                    )
                    self.logger.warning(
                        "Release blocked by open dispute",
                        extra={"session_id": session_id, "dispute_id": dispute.id},
                    )
                    return self._finish(ReleaseOutcome.BLOCKED, session_id)

                if payment.status not in _RELEASABLE_PAYMENT_STATUSES:
                    raise ReleaseIntegrityException(
                        f"Payment is {payment.status}; nothing was captured", session_id=session_id
                    )
                transfer = self.payment_ledger.releasable_amount_cents(payment)
                if transfer <= 0:
                    return self._finish(ReleaseOutcome.NOTHING_TO_RELEASE, session_id)

                mentor_id = str(session.mentor_id)
                pending = int(self.balance_ledger.get_balance(mentor_id)["pending_balance_cents"])
                if pending < transfer:
                    self.logger.error(
                        "Pending balance is short of the release amount",
                        extra={
                            "session_id": session_id,
                            "mentor_id": mentor_id,
                            "pending_cents": pending,
                            "transfer_cents": transfer,
                        },
                    )
                    raise InsufficientPendingBalanceException(mentor_id, transfer, pending)

                self.payment_ledger.mark_released(payment, released_at)
                self.balance_ledger.release_to_available(mentor_id, transfer)
                self.publisher.publish(
                    PaymentReleased(
                        session_id=session_id,
                        payment_id=str(payment.id),
                        mentor_id=mentor_id,
                        amount_cents=transfer,
                        released_at=released_at,
                    )
                )
        except AlreadyReleasedException:
            # Another worker flipped the flag between our read and the update.
            return self._finish(ReleaseOutcome.ALREADY_RELEASED, session_id)

        return self._finish(ReleaseOutcome.RELEASED, session_id)
