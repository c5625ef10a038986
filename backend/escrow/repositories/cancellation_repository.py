"""Data access for session cancellation records."""

from typing import Optional

from sqlalchemy.orm import Session

from ..models.session_cancellation import SessionCancellation
from .base_repository import BaseRepository


class CancellationRepository(BaseRepository[SessionCancellation]):
    def __init__(self, db: Session):
        super().__init__(db, SessionCancellation)

    def get_by_session_id(self, session_id: str) -> Optional[SessionCancellation]:
        return self.find_one_by(session_id=session_id)
