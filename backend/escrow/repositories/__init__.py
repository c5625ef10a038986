"""
Repository layer for the escrow engine.

Repositories own data access; services own transactions.
"""

from .base_repository import BaseRepository
from .cancellation_repository import CancellationRepository
from .dispute_repository import DisputeRepository
from .event_outbox_repository import EventOutboxRepository
from .factory import RepositoryFactory
from .mentor_balance_repository import MentorBalanceRepository
from .payment_repository import PaymentRepository
from .payout_repository import PayoutRepository
from .reschedule_repository import RescheduleRepository
from .scheduled_job_repository import ScheduledJobRepository
from .session_repository import SessionRepository
from .time_slot_repository import TimeSlotRepository

__all__ = [
    "BaseRepository",
    "CancellationRepository",
    "DisputeRepository",
    "EventOutboxRepository",
    "MentorBalanceRepository",
    "PaymentRepository",
    "PayoutRepository",
    "RepositoryFactory",
    "RescheduleRepository",
    "ScheduledJobRepository",
    "SessionRepository",
    "TimeSlotRepository",
]
