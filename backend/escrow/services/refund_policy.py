"""Refund policy evaluation for cancellations and dispute refunds."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from ..core.config import settings
from ..core.exceptions import ValidationException
from ..core.timezone_utils import hours_between


@dataclass(frozen=True)
class RefundPolicy:
    """Lead-time tiers, longest first."""

    full_refund_hours: float = 48
    partial_refund_hours: float = 24
    partial_refund_percentage: int = 50

    def __post_init__(self) -> None:
        if self.partial_refund_hours > self.full_refund_hours:
            raise ValueError("partial_refund_hours must not exceed full_refund_hours")
        if not 0 <= self.partial_refund_percentage <= 100:
            raise ValueError("partial_refund_percentage must be between 0 and 100")

    @classmethod
    def from_settings(cls) -> "RefundPolicy":
        return cls(
            full_refund_hours=settings.full_refund_hours,
            partial_refund_hours=settings.partial_refund_hours,
            partial_refund_percentage=settings.partial_refund_percentage,
        )

    def percentage_for(self, lead_time_hours: float) -> int:
        if lead_time_hours >= self.full_refund_hours:
            return 100
        if lead_time_hours >= self.partial_refund_hours:
            return self.partial_refund_percentage
        return 0


@dataclass(frozen=True)
class RefundQuote:
    percentage: int
    refund_amount_cents: int
    lead_time_hours: float | None = None

    @property
    def is_refundable(self) -> bool:
        return self.refund_amount_cents > 0


def _apply_percentage(amount_cents: int, percentage: int) -> int:
    value = Decimal(amount_cents) * Decimal(percentage) / Decimal(100)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_refund(
    cancelled_at: datetime,
    scheduled_start: datetime,
    amount_cents: int,
    policy: RefundPolicy | None = None,
) -> RefundQuote:
    """
    Return the refund owed for cancelling at ``cancelled_at``.

    Deterministic and side-effect free; a cancellation after the start has a
    negative lead time and falls into the no-refund tier.
    """
    if amount_cents < 0:
        raise ValidationException("Amount must not be negative", code="INVALID_AMOUNT")
    policy = policy or RefundPolicy.from_settings()
    lead_time = hours_between(cancelled_at, scheduled_start)
    percentage = policy.percentage_for(lead_time)
    return RefundQuote(
        percentage=percentage,
        refund_amount_cents=_apply_percentage(amount_cents, percentage),
        lead_time_hours=lead_time,
    )


def quote_for_amount(amount_cents: int, refund_amount_cents: int) -> RefundQuote:
    """Quote an explicit refund (dispute resolutions) as a percentage of the payment."""
    if refund_amount_cents <= 0:
        raise ValidationException(
            "Refund amount must be greater than zero", code="INVALID_REFUND_AMOUNT"
        )
    if refund_amount_cents > amount_cents:
        raise ValidationException(
            "Refund amount cannot exceed the payment amount",
            code="INVALID_REFUND_AMOUNT",
            details={"amount_cents": amount_cents, "refund_amount_cents": refund_amount_cents},
        )
    percentage = int(
        (Decimal(refund_amount_cents) * 100 / Decimal(amount_cents)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
    )
    return RefundQuote(percentage=max(1, percentage), refund_amount_cents=refund_amount_cents)
