# backend/escrow/repositories/factory.py
"""
Repository Factory for the escrow engine.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from sqlalchemy.orm import Session

from .cancellation_repository import CancellationRepository
from .dispute_repository import DisputeRepository
from .event_outbox_repository import EventOutboxRepository
from .mentor_balance_repository import MentorBalanceRepository
from .payment_repository import PaymentRepository
from .payout_repository import PayoutRepository
from .reschedule_repository import RescheduleRepository
from .scheduled_job_repository import ScheduledJobRepository
from .session_repository import SessionRepository
from .time_slot_repository import TimeSlotRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_session_repository(db: Session) -> SessionRepository:
        return SessionRepository(db)

    @staticmethod
    def create_time_slot_repository(db: Session) -> TimeSlotRepository:
        return TimeSlotRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> PaymentRepository:
        return PaymentRepository(db)

    @staticmethod
    def create_mentor_balance_repository(db: Session) -> MentorBalanceRepository:
        return MentorBalanceRepository(db)

    @staticmethod
    def create_cancellation_repository(db: Session) -> CancellationRepository:
        return CancellationRepository(db)

    @staticmethod
    def create_dispute_repository(db: Session) -> DisputeRepository:
        return DisputeRepository(db)

    @staticmethod
    def create_reschedule_repository(db: Session) -> RescheduleRepository:
        return RescheduleRepository(db)

    @staticmethod
    def create_payout_repository(db: Session) -> PayoutRepository:
        return PayoutRepository(db)

    @staticmethod
    def create_scheduled_job_repository(db: Session) -> ScheduledJobRepository:
        return ScheduledJobRepository(db)

    @staticmethod
    def create_event_outbox_repository(db: Session) -> EventOutboxRepository:
        return EventOutboxRepository(db)
