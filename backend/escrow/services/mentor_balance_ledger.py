"""
Mentor balance ledger.

Pending, available and lifetime earnings per mentor. Each method issues one
atomic SQL delta inside the caller's transaction; the repository guards make
a failed precondition a no-op, which is turned into a domain error here.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from ..core.exceptions import (
    InsufficientAvailableBalanceException,
    InsufficientPendingBalanceException,
    ValidationException,
)
from ..repositories.factory import RepositoryFactory
from .base import BaseService


class MentorBalanceLedger(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.balance_repository = RepositoryFactory.create_mentor_balance_repository(db)

    @staticmethod
    def _check_amount(amount_cents: int) -> None:
        if amount_cents <= 0:
            raise ValidationException(
                "Balance movements must be positive", code="INVALID_AMOUNT"
            )

    def _pending_for(self, mentor_id: str) -> int:
        balance = self.balance_repository.get_by_mentor_id(mentor_id)
        return int(balance.pending_balance_cents) if balance else 0

    @BaseService.measure_operation("balance.credit_pending")
    def credit_pending(self, mentor_id: str, amount_cents: int) -> None:
        """Add a completed session's payout to pending and lifetime earnings."""
        self._check_amount(amount_cents)
        self.balance_repository.ensure_exists(mentor_id)
        self.balance_repository.credit_pending(mentor_id, amount_cents)
        self.logger.info(
            "Credited pending balance",
            extra={"mentor_id": mentor_id, "amount_cents": amount_cents},
        )

    @BaseService.measure_operation("balance.release_to_available")
    def release_to_available(self, mentor_id: str, amount_cents: int) -> None:
        self._check_amount(amount_cents)
        if not self.balance_repository.move_pending_to_available(mentor_id, amount_cents):
            raise InsufficientPendingBalanceException(
                mentor_id, amount_cents, self._pending_for(mentor_id)
            )

    @BaseService.measure_operation("balance.debit_for_payout")
    def debit_for_payout(self, mentor_id: str, amount_cents: int) -> None:
        self._check_amount(amount_cents)
        if not self.balance_repository.debit_available(mentor_id, amount_cents):
            raise InsufficientAvailableBalanceException(mentor_id, amount_cents)

    def restore_available(self, mentor_id: str, amount_cents: int) -> None:
        """Put back funds from a payout that failed or was cancelled."""
        self._check_amount(amount_cents)
        if not self.balance_repository.credit_available(mentor_id, amount_cents):
            # Would push available + pending above lifetime earnings.
            raise ValidationException(
                "Restored amount exceeds recorded earnings",
                code="INVALID_BALANCE_RESTORE",
                details={"mentor_id": mentor_id, "amount_cents": amount_cents},
            )

    def reverse_pending(self, mentor_id: str, amount_cents: int) -> None:
        """Remove the mentor share of a refund from pending; earnings stay as recorded."""
        if amount_cents == 0:
            return
        self._check_amount(amount_cents)
        if not self.balance_repository.debit_pending(mentor_id, amount_cents):
            raise InsufficientPendingBalanceException(
                mentor_id, amount_cents, self._pending_for(mentor_id)
            )

    def get_balance(self, mentor_id: str) -> dict[str, int | str]:
        balance = self.balance_repository.get_by_mentor_id(mentor_id)
        if balance is None:
            return {
                "mentor_id": mentor_id,
                "available_balance_cents": 0,
                "pending_balance_cents": 0,
                "total_earnings_cents": 0,
            }
        return balance.to_dict()
