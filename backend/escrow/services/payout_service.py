"""
Mentor payouts.

Requesting a payout debits available balance up front; a payout that fails or
is cancelled puts the amount back. Every status change is published so the
mentor can be notified.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import utcnow
from ..events import EventPublisher, PayoutStatusChanged
from ..models.payout import Payout, PayoutStatus
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .mentor_balance_ledger import MentorBalanceLedger


class PayoutService(BaseService):
    def __init__(
        self,
        db: Session,
        balance_ledger: Optional[MentorBalanceLedger] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        super().__init__(db)
        self.payout_repository = RepositoryFactory.create_payout_repository(db)
        self.balance_ledger = balance_ledger or MentorBalanceLedger(db)
        self.publisher = publisher or EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    def get_payout(self, payout_id: str) -> Payout:
        payout = self.payout_repository.get_by_id(payout_id, for_update=True)
        if payout is None:
            raise NotFoundException(f"Payout {payout_id} not found", code="PAYOUT_NOT_FOUND")
        return payout

    def list_for_mentor(self, mentor_id: str, limit: int = 50) -> List[Payout]:
        return self.payout_repository.list_for_mentor(mentor_id, limit=limit)

    def _publish(self, payout: Payout) -> None:
        self.publisher.publish(
            PayoutStatusChanged(
                payout_id=str(payout.id),
                mentor_id=str(payout.mentor_id),
                status=str(payout.status),
                amount_cents=int(payout.amount_cents),
            )
        )

    def _move(self, payout: Payout, allowed: tuple[PayoutStatus, ...], target: PayoutStatus) -> None:
        if payout.status not in {status.value for status in allowed}:
            raise InvalidTransitionException(
                "Payout", str(payout.id), str(payout.status), target.value
            )
        payout.status = target.value

    @BaseService.measure_operation("payout.request")
    def request_payout(self, mentor_id: str, amount_cents: int) -> Payout:
        if not settings.payout_min_cents <= amount_cents <= settings.payout_max_cents:
            raise ValidationException(
                "Payout amount is outside the allowed range",
                code="INVALID_PAYOUT_AMOUNT",
                details={
                    "amount_cents": amount_cents,
                    "min_cents": settings.payout_min_cents,
                    "max_cents": settings.payout_max_cents,
                },
            )
        with self.transaction():
            self.balance_ledger.debit_for_payout(mentor_id, amount_cents)
            payout = self.payout_repository.create(
                mentor_id=mentor_id,
                amount_cents=amount_cents,
                status=PayoutStatus.PENDING.value,
            )
            self._publish(payout)
        self.log_operation("payout.request", payout_id=payout.id, mentor_id=mentor_id)
        return payout

    @BaseService.measure_operation("payout.process")
    def process(self, payout_id: str) -> Payout:
        with self.transaction():
            payout = self.get_payout(payout_id)
            self._move(payout, (PayoutStatus.PENDING,), PayoutStatus.PROCESSING)
            payout.processed_at = utcnow()
            self.db.flush()
            self._publish(payout)
        return payout

    @BaseService.measure_operation("payout.complete")
    def complete(self, payout_id: str) -> Payout:
        with self.transaction():
            payout = self.get_payout(payout_id)
            self._move(payout, (PayoutStatus.PROCESSING,), PayoutStatus.COMPLETED)
            payout.completed_at = utcnow()
            self.db.flush()
            self._publish(payout)
        return payout

    @BaseService.measure_operation("payout.fail")
    def fail(self, payout_id: str, reason: str) -> Payout:
        """Mark a payout failed and return its amount to available balance."""
        with self.transaction():
            payout = self.get_payout(payout_id)
            self._move(
                payout, (PayoutStatus.PENDING, PayoutStatus.PROCESSING), PayoutStatus.FAILED
            )
            payout.failure_reason = reason[:500]
            payout.failed_at = utcnow()
            self.balance_ledger.restore_available(str(payout.mentor_id), int(payout.amount_cents))
            self.db.flush()
            self._publish(payout)
        self.logger.warning("Payout %s failed: %s", payout_id, reason)
        return payout

    @BaseService.measure_operation("payout.cancel")
    def cancel(self, payout_id: str, mentor_id: str) -> Payout:
        with self.transaction():
            payout = self.get_payout(payout_id)
            if payout.mentor_id != mentor_id:
                raise ForbiddenException(
                    "Only the requesting mentor can cancel this payout", code="NOT_PAYOUT_OWNER"
                )
            self._move(payout, (PayoutStatus.PENDING,), PayoutStatus.CANCELLED)
            payout.cancelled_at = utcnow()
            self.balance_ledger.restore_available(mentor_id, int(payout.amount_cents))
            self.db.flush()
            self._publish(payout)
        return payout
