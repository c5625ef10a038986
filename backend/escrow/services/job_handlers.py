"""Wires scheduled job types to the services that handle them."""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy.orm import Session

from ..events import EventPublisher
from ..models.scheduled_job import JobType
from ..repositories.factory import RepositoryFactory
from .dispute_guard import DisputeGuard
from .job_scheduler import JobScheduler
from .mentor_balance_ledger import MentorBalanceLedger
from .payment_ledger import PaymentLedger
from .payment_release_worker import PaymentReleaseWorker
from .reschedule_service import RescheduleService
from .session_service import SessionService


def build_job_scheduler(db: Session) -> JobScheduler:
    """Return a scheduler whose handlers share ``db`` and one event publisher."""
    scheduler = JobScheduler(db)
    publisher = EventPublisher(RepositoryFactory.create_event_outbox_repository(db))
    payment_ledger = PaymentLedger(db)
    balance_ledger = MentorBalanceLedger(db)
    dispute_guard = DisputeGuard(
        db,
        payment_ledger=payment_ledger,
        balance_ledger=balance_ledger,
        scheduler=scheduler,
        publisher=publisher,
    )
    worker = PaymentReleaseWorker(db, payment_ledger, balance_ledger, dispute_guard, publisher)
    sessions = SessionService(
        db,
        payment_ledger=payment_ledger,
        balance_ledger=balance_ledger,
        scheduler=scheduler,
        publisher=publisher,
    )
    reschedules = RescheduleService(db, scheduler=scheduler)

    def release(payload: Dict[str, Any]) -> Any:
        return worker.execute(payload["session_id"])

    def timeout(payload: Dict[str, Any]) -> Any:
        return sessions.release_unpaid_session(payload["session_id"])

    def expiry(payload: Dict[str, Any]) -> Any:
        return reschedules.expire(payload["request_id"])

    scheduler.register(JobType.PAYMENT_RELEASE, release)
    scheduler.register(JobType.PAYMENT_TIMEOUT, timeout)
    scheduler.register(JobType.RESCHEDULE_EXPIRY, expiry)
    return scheduler
