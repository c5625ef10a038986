"""Data access for mentor time slots."""

from sqlalchemy.orm import Session

from ..models.time_slot import TimeSlot
from .base_repository import BaseRepository


class TimeSlotRepository(BaseRepository[TimeSlot]):
    def __init__(self, db: Session):
        super().__init__(db, TimeSlot)

    def try_book(self, slot_id: str, session_id: str) -> bool:
        """Mark a free slot booked for ``session_id``; False if someone got there first."""
        return self._guarded_update(
            TimeSlot.id == slot_id,
            TimeSlot.is_booked.is_(False),
            is_booked=True,
            session_id=session_id,
        )

    def release(self, slot_id: str, session_id: str) -> bool:
        """Free a slot held by ``session_id`` so it can be booked again."""
        return self._guarded_update(
            TimeSlot.id == slot_id,
            TimeSlot.session_id == session_id,
            is_booked=False,
            session_id=None,
        )
