"""Data access for reschedule requests."""

from typing import Optional

from sqlalchemy.orm import Session

from ..models.reschedule_request import RescheduleRequest, RescheduleStatus
from .base_repository import BaseRepository


class RescheduleRepository(BaseRepository[RescheduleRequest]):
    def __init__(self, db: Session):
        super().__init__(db, RescheduleRequest)

    def get_pending_for_session(self, session_id: str) -> Optional[RescheduleRequest]:
        return self.find_one_by(session_id=session_id, status=RescheduleStatus.PENDING.value)
