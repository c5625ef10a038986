# backend/escrow/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.info(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    """Runtime configuration for the escrow engine."""

    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Deployment environment name",
    )
    database_url: str = Field(
        default="sqlite+pysqlite:///./escrow.db",
        description="SQLAlchemy URL for the ledger database",
    )
    redis_url: str = Field(
        default="redis://localhost:6379",
        description="Redis URL used as the Celery broker",
    )
    currency: str = Field(default="USD", description="Ledger currency code")

    # Escrow policy
    platform_commission: float = Field(
        default=0.15,
        description="Fraction of each session price retained by the platform",
        ge=0,
        lt=1,
    )
    holding_period_hours: int = Field(
        default=72,
        description="Hours after completion before funds are released to the mentor",
        ge=0,
    )
    dispute_window_hours: int = Field(
        default=72,
        description="Hours after completion during which a mentee may open a dispute",
        ge=0,
    )

    # Refund tiers (lead time before the scheduled start)
    full_refund_hours: int = Field(
        default=48,
        description="Minimum lead time for a full refund on cancellation",
        ge=0,
    )
    partial_refund_hours: int = Field(
        default=24,
        description="Minimum lead time for a partial refund on cancellation",
        ge=0,
    )
    partial_refund_percentage: int = Field(
        default=50,
        description="Refund percentage inside the partial refund tier",
        ge=0,
        le=100,
    )

    # Session lifecycle
    booking_min_advance_hours: int = Field(
        default=24,
        description="Bookings must be made at least this many hours in advance",
        ge=0,
    )
    reschedule_min_lead_hours: int = Field(
        default=24,
        description="Reschedules require this much lead time before start",
        ge=0,
    )
    reschedule_approval_timeout_hours: int = Field(
        default=48,
        description="Pending reschedule requests expire after this many hours",
        ge=1,
    )
    payment_expiration_minutes: int = Field(
        default=15,
        description="Unpaid bookings are released after this many minutes",
        ge=1,
    )
    session_join_window_minutes: int = Field(
        default=15,
        description="How early before the scheduled start a session may begin",
        ge=0,
    )

    # Payouts
    payout_min_cents: int = Field(default=25000, description="Minimum payout amount", ge=1)
    payout_max_cents: int = Field(default=10_000_000, description="Maximum payout amount", ge=1)

    # Durable jobs
    jobs_backoff_base: int = Field(
        default=30,
        description="Base backoff in seconds for background job retries",
        ge=1,
    )
    jobs_backoff_cap: int = Field(
        default=1800,
        description="Maximum backoff in seconds for background job retries",
        ge=1,
    )
    jobs_batch: int = Field(
        default=25,
        description="Maximum number of jobs processed per dispatch",
        ge=1,
    )
    jobs_max_attempts: int = Field(
        default=5,
        description="Maximum retry attempts before moving a job to the dead-letter state",
        ge=1,
    )
    jobs_running_timeout_seconds: int = Field(
        default=900,
        description="Running jobs untouched for this long are returned to the queue",
        ge=60,
    )
    outbox_batch: int = Field(
        default=200,
        description="Maximum number of outbox events relayed per run",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_refund_tiers(self) -> "Settings":
        """Refund tiers must be ordered from the longest lead time down."""
        if self.partial_refund_hours > self.full_refund_hours:
            raise ValueError("partial_refund_hours must not exceed full_refund_hours")
        if self.payout_min_cents > self.payout_max_cents:
            raise ValueError("payout_min_cents must not exceed payout_max_cents")
        return self


settings = Settings()
logger.info(
    "[CONFIG] Escrow policy: commission=%s holding_period_hours=%s dispute_window_hours=%s",
    settings.platform_commission,
    settings.holding_period_hours,
    settings.dispute_window_hours,
)
