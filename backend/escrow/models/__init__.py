"""
Database models for the escrow engine.

Importing this package registers every table on ``Base.metadata``.
"""

from .event_outbox import EventOutbox, EventOutboxStatus
from .mentor_balance import MentorBalance
from .mentorship_session import (
    CANCELLABLE_STATUSES,
    SESSION_TRANSITIONS,
    MentorshipSession,
    SessionStatus,
    SessionType,
)
from .payment import (
    Payment,
    PaymentProvider,
    PaymentStatus,
    RefundStatus,
    commission_cents,
    mentor_share_cents,
)
from .payout import Payout, PayoutStatus
from .reschedule_request import RescheduleRequest, RescheduleStatus
from .scheduled_job import JobStatus, JobType, ScheduledJob
from .session_cancellation import CancelledByRole, SessionCancellation
from .session_dispute import (
    ACTIVE_DISPUTE_STATUSES,
    DisputeReason,
    DisputeResolution,
    DisputeStatus,
    SessionDispute,
)
from .time_slot import ALLOWED_DURATIONS, TimeSlot

__all__ = [
    "ACTIVE_DISPUTE_STATUSES",
    "ALLOWED_DURATIONS",
    "CANCELLABLE_STATUSES",
    "SESSION_TRANSITIONS",
    "CancelledByRole",
    "DisputeReason",
    "DisputeResolution",
    "DisputeStatus",
    "EventOutbox",
    "EventOutboxStatus",
    "JobStatus",
    "JobType",
    "MentorBalance",
    "MentorshipSession",
    "Payment",
    "PaymentProvider",
    "PaymentStatus",
    "Payout",
    "PayoutStatus",
    "RefundStatus",
    "RescheduleRequest",
    "RescheduleStatus",
    "ScheduledJob",
    "SessionCancellation",
    "SessionDispute",
    "SessionStatus",
    "SessionType",
    "TimeSlot",
    "commission_cents",
    "mentor_share_cents",
]
