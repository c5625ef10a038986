"""Durable, keyed jobs for the escrow scheduler."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..database import Base


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    DEAD = "dead"


class JobType(str, Enum):
    PAYMENT_RELEASE = "payment_release"
    PAYMENT_TIMEOUT = "payment_timeout"
    RESCHEDULE_EXPIRY = "reschedule_expiry"


class ScheduledJob(Base):
    """
    Persisted job row.

    ``job_key`` is the natural deduplication key (e.g. ``payment_release:<session id>``);
    scheduling the same key twice updates the existing row.
    """

    __tablename__ = "scheduled_jobs"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    job_key = Column(String(100), nullable=False)
    job_type = Column(String(50), nullable=False, index=True)
    payload = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=dict,
    )
    status = Column(String(20), nullable=False, default=JobStatus.QUEUED.value)
    attempts = Column(Integer, nullable=False, default=0)
    available_at = Column(DateTime(timezone=True), nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("job_key", name="uq_scheduled_jobs_job_key"),
        Index("ix_scheduled_jobs_status_available", "status", "available_at"),
    )

    def __repr__(self) -> str:
        return f"<ScheduledJob {self.job_key} status={self.status} attempts={self.attempts}>"
