"""Data access for session disputes."""

from typing import Optional

from sqlalchemy.orm import Session

from ..models.session_dispute import ACTIVE_DISPUTE_STATUSES, SessionDispute
from .base_repository import BaseRepository


class DisputeRepository(BaseRepository[SessionDispute]):
    def __init__(self, db: Session):
        super().__init__(db, SessionDispute)

    def get_active_for_session(self, session_id: str) -> Optional[SessionDispute]:
        return (
            self.db.query(SessionDispute)
            .filter(
                SessionDispute.session_id == session_id,
                SessionDispute.status.in_(ACTIVE_DISPUTE_STATUSES),
            )
            .order_by(SessionDispute.created_at.asc())
            .first()
        )

    def has_active_for_session(self, session_id: str) -> bool:
        return self.get_active_for_session(session_id) is not None
