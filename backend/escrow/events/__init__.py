"""Ledger events and the outbox publisher."""

from .ledger_events import (
    DisputeResolved,
    PaymentReleased,
    PayoutStatusChanged,
    ReleaseBlockedByDispute,
    SessionCancelled,
)
from .publisher import Event, EventPublisher

__all__ = [
    "DisputeResolved",
    "Event",
    "EventPublisher",
    "PaymentReleased",
    "PayoutStatusChanged",
    "ReleaseBlockedByDispute",
    "SessionCancelled",
]
