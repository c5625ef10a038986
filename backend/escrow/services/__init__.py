"""Service layer for the escrow engine."""

from .base import BaseService
from .dispute_guard import DisputeGuard
from .job_handlers import build_job_scheduler
from .job_scheduler import JobScheduler
from .mentor_balance_ledger import MentorBalanceLedger
from .outbox_relay import NotificationSink, OutboxRelay
from .payment_ledger import PaymentLedger
from .payment_release_worker import PaymentReleaseWorker, ReleaseOutcome
from .payout_service import PayoutService
from .refund_policy import RefundPolicy, RefundQuote, calculate_refund, quote_for_amount
from .reschedule_service import RescheduleService
from .session_service import SessionService

__all__ = [
    "BaseService",
    "DisputeGuard",
    "JobScheduler",
    "MentorBalanceLedger",
    "NotificationSink",
    "OutboxRelay",
    "PaymentLedger",
    "PaymentReleaseWorker",
    "PayoutService",
    "RefundPolicy",
    "RefundQuote",
    "RescheduleService",
    "ReleaseOutcome",
    "SessionService",
    "build_job_scheduler",
    "calculate_refund",
    "quote_for_amount",
]
