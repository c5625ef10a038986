"""Ledger domain events consumed by the notification collaborator."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class PaymentReleased:
    """Fired after escrowed funds move to the mentor's available balance."""

    session_id: str
    payment_id: str
    mentor_id: str
    amount_cents: int
    released_at: datetime

    event_type = "payment_released"

    @property
    def aggregate_id(self) -> str:
        return self.session_id

    @property
    def idempotency_key(self) -> str:
        return f"{self.event_type}:{self.payment_id}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReleaseBlockedByDispute:
    """Fired when a due release is skipped because a dispute is open."""

    session_id: str
    dispute_id: str
    mentor_id: Optional[str] = None

    event_type = "release_blocked_by_dispute"

    @property
    def aggregate_id(self) -> str:
        return self.session_id

    @property
    def idempotency_key(self) -> str:
        return f"{self.event_type}:{self.session_id}:{self.dispute_id}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionCancelled:
    """Fired after a session is cancelled."""

    session_id: str
    cancelled_by: str
    cancelled_by_role: str
    cancelled_at: datetime
    refund_amount_cents: int = 0
    refund_percentage: int = 0

    event_type = "session_cancelled"

    @property
    def aggregate_id(self) -> str:
        return self.session_id

    @property
    def idempotency_key(self) -> str:
        return f"{self.event_type}:{self.session_id}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DisputeResolved:
    """Fired after an admin resolves a dispute."""

    dispute_id: str
    session_id: str
    resolution: str
    refund_amount_cents: int = 0

    event_type = "dispute_resolved"

    @property
    def aggregate_id(self) -> str:
        return self.session_id

    @property
    def idempotency_key(self) -> str:
        return f"{self.event_type}:{self.dispute_id}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PayoutStatusChanged:
    """Fired whenever a payout changes status."""

    payout_id: str
    mentor_id: str
    status: str
    amount_cents: int

    event_type = "payout_status_changed"

    @property
    def aggregate_id(self) -> str:
        return self.payout_id

    @property
    def idempotency_key(self) -> str:
        return f"{self.event_type}:{self.payout_id}:{self.status}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
