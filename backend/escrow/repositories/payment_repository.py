"""Data access for session payments."""

from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..database.session_utils import supports_row_locks
from ..models.payment import Payment
from .base_repository import BaseRepository


class PaymentRepository(BaseRepository[Payment]):
    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def get_by_session_id(self, session_id: str, for_update: bool = False) -> Optional[Payment]:
        try:
            query = self.db.query(Payment).filter(Payment.session_id == session_id)
            if for_update and supports_row_locks(self.db):
                query = query.with_for_update()
            return query.first()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load payment for session %s: %s", session_id, str(exc))
            raise RepositoryException("Failed to retrieve payment") from exc

    def mark_released(self, payment_id: str, released_at: datetime) -> bool:
        """Flip ``is_released_to_mentor`` once; False if it was already set."""
        return self._guarded_update(
            Payment.id == payment_id,
            Payment.is_released_to_mentor.is_(False),
            is_released_to_mentor=True,
            released_at=released_at,
        )
