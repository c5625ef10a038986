"""
Mentor balance data access.

Every balance change is a single UPDATE with the arithmetic done in SQL.
Guards in the WHERE clause keep balances non-negative; a False return means
the guard did not hold and nothing changed.
"""

from typing import Optional

from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func
import ulid

from ..core.exceptions import RepositoryException
from ..models.mentor_balance import MentorBalance
from .base_repository import BaseRepository


class MentorBalanceRepository(BaseRepository[MentorBalance]):
    def __init__(self, db: Session):
        super().__init__(db, MentorBalance)

    def get_by_mentor_id(self, mentor_id: str) -> Optional[MentorBalance]:
        try:
            return (
                self.db.query(MentorBalance)
                .filter(MentorBalance.mentor_id == mentor_id)
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load balance for mentor %s: %s", mentor_id, str(exc))
            raise RepositoryException("Failed to load mentor balance") from exc

    def ensure_exists(self, mentor_id: str) -> None:
        """Insert an empty balance row unless one already exists."""
        values = {
            "id": str(ulid.ULID()),
            "mentor_id": mentor_id,
            "available_balance_cents": 0,
            "pending_balance_cents": 0,
            "total_earnings_cents": 0,
        }
        try:
            if self.dialect_name == "postgresql":
                stmt = (
                    pg_insert(MentorBalance)
                    .values(**values)
                    .on_conflict_do_nothing(index_elements=["mentor_id"])
                )
            else:
                stmt = insert(MentorBalance).values(**values)
                if self.dialect_name == "sqlite":
                    stmt = stmt.prefix_with("OR IGNORE")
            self.db.execute(stmt)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to create balance for mentor %s: %s", mentor_id, str(exc))
            raise RepositoryException("Failed to create mentor balance") from exc

    def credit_pending(self, mentor_id: str, amount_cents: int) -> bool:
        return self._guarded_update(
            MentorBalance.mentor_id == mentor_id,
            pending_balance_cents=MentorBalance.pending_balance_cents + amount_cents,
            total_earnings_cents=MentorBalance.total_earnings_cents + amount_cents,
            updated_at=func.now(),
        )

    def move_pending_to_available(self, mentor_id: str, amount_cents: int) -> bool:
        return self._guarded_update(
            MentorBalance.mentor_id == mentor_id,
            MentorBalance.pending_balance_cents >= amount_cents,
            pending_balance_cents=MentorBalance.pending_balance_cents - amount_cents,
            available_balance_cents=MentorBalance.available_balance_cents + amount_cents,
            updated_at=func.now(),
        )

    def debit_available(self, mentor_id: str, amount_cents: int) -> bool:
        return self._guarded_update(
            MentorBalance.mentor_id == mentor_id,
            MentorBalance.available_balance_cents >= amount_cents,
            available_balance_cents=MentorBalance.available_balance_cents - amount_cents,
            updated_at=func.now(),
        )

    def credit_available(self, mentor_id: str, amount_cents: int) -> bool:
        """Return previously debited funds; never exceeds lifetime earnings."""
        return self._guarded_update(
            MentorBalance.mentor_id == mentor_id,
            MentorBalance.available_balance_cents
            + MentorBalance.pending_balance_cents
            + amount_cents
            <= MentorBalance.total_earnings_cents,
            available_balance_cents=MentorBalance.available_balance_cents + amount_cents,
            updated_at=func.now(),
        )

    def debit_pending(self, mentor_id: str, amount_cents: int) -> bool:
        return self._guarded_update(
            MentorBalance.mentor_id == mentor_id,
            MentorBalance.pending_balance_cents >= amount_cents,
            pending_balance_cents=MentorBalance.pending_balance_cents - amount_cents,
            updated_at=func.now(),
        )
