"""Data access for mentor payouts."""

from typing import List

from sqlalchemy.orm import Session

from ..models.payout import Payout
from .base_repository import BaseRepository


class PayoutRepository(BaseRepository[Payout]):
    def __init__(self, db: Session):
        super().__init__(db, Payout)

    def list_for_mentor(self, mentor_id: str, limit: int = 50) -> List[Payout]:
        return (
            self.db.query(Payout)
            .filter(Payout.mentor_id == mentor_id)
            .order_by(Payout.created_at.desc(), Payout.id.desc())
            .limit(limit)
            .all()
        )
