"""Repository for durable, keyed scheduler jobs."""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, List, Optional, cast

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import ulid

from ..core.config import settings
from ..core.exceptions import RepositoryException
from ..core.timezone_utils import utcnow
from ..database.session_utils import get_dialect_name
from ..models.scheduled_job import JobStatus, ScheduledJob

logger = logging.getLogger(__name__)


class ScheduledJobRepository:
    """Data access helpers for the scheduled_jobs table."""

    def __init__(self, db: Session):
        self.db = db
        self.logger = logger
        self._dialect = get_dialect_name(db).lower()

    def get_by_key(self, job_key: str) -> Optional[ScheduledJob]:
        result = self.db.execute(
            select(ScheduledJob)
            .where(ScheduledJob.job_key == job_key)
            .execution_options(populate_existing=True)
        )
        return cast(Optional[ScheduledJob], result.scalar_one_or_none())

    def upsert(
        self,
        *,
        job_key: str,
        job_type: str,
        payload: dict[str, Any],
        available_at: datetime,
    ) -> ScheduledJob:
        """
        Insert a queued job for ``job_key`` or re-arm the existing one.

        A job that is currently running is left untouched.
        """

        try:
            job = self.get_by_key(job_key)
            if job is None:
                values = {
                    "id": str(ulid.ULID()),
                    "job_key": job_key,
                    "job_type": job_type,
                    "payload": payload,
                    "status": JobStatus.QUEUED.value,
                    "attempts": 0,
                    "available_at": available_at,
                }
                if self._dialect == "postgresql":
                    stmt = (
                        pg_insert(ScheduledJob)
                        .values(**values)
                        .on_conflict_do_nothing(index_elements=["job_key"])
                    )
                else:
                    stmt = insert(ScheduledJob).values(**values)
                    if self._dialect == "sqlite":
                        stmt = stmt.prefix_with("OR IGNORE")
                self.db.execute(stmt)
                job = self.get_by_key(job_key)
                if job is None:
                    raise RepositoryException(f"Scheduled job {job_key} vanished after insert")
                if job.id == values["id"]:
                    return job

            if job.status == JobStatus.RUNNING.value:
                self.logger.info("Job %s is running; leaving schedule unchanged", job_key)
                return job

            job.job_type = job_type
            job.payload = payload
            job.status = JobStatus.QUEUED.value
            job.attempts = 0
            job.available_at = available_at
            job.last_error = None
            job.updated_at = utcnow()
            self.db.flush()
            return job
        except SQLAlchemyError as exc:
            self.logger.error("Failed to schedule job %s: %s", job_key, str(exc))
            raise RepositoryException("Failed to schedule job") from exc

    def fetch_due(self, *, limit: int = 50, now: datetime | None = None) -> List[ScheduledJob]:
        """Return queued jobs that are ready to run."""

        try:
            stmt = (
                select(ScheduledJob)
                .where(
                    ScheduledJob.status == JobStatus.QUEUED.value,
                    ScheduledJob.available_at <= (now or utcnow()),
                )
                .order_by(ScheduledJob.available_at.asc(), ScheduledJob.id.asc())
                .limit(limit)
            )
            if self._dialect == "postgresql":
                stmt = stmt.with_for_update(skip_locked=True)
            return cast(List[ScheduledJob], list(self.db.execute(stmt).scalars().all()))
        except SQLAlchemyError as exc:
            self.logger.error("Failed to fetch due jobs: %s", str(exc))
            raise RepositoryException("Failed to fetch scheduled jobs") from exc

    def claim(self, job: ScheduledJob) -> bool:
        """Move a queued job to running; False if another worker claimed it first."""

        try:
            result = self.db.execute(
                ScheduledJob.__table__.update()
                .where(
                    ScheduledJob.id == job.id,
                    ScheduledJob.status == JobStatus.QUEUED.value,
                )
                .values(status=JobStatus.RUNNING.value, updated_at=utcnow())
            )
            claimed = bool(result.rowcount)
            if claimed:
                self.db.refresh(job)
            return claimed
        except SQLAlchemyError as exc:
            self.logger.error("Failed to claim job %s: %s", job.job_key, str(exc))
            raise RepositoryException("Failed to claim job") from exc

    def mark_succeeded(self, job: ScheduledJob) -> None:
        job.status = JobStatus.SUCCEEDED.value
        job.last_error = None
        job.updated_at = utcnow()
        self.db.flush()

    def mark_dead(self, job: ScheduledJob, error: str) -> None:
        """Park a job that must not be retried."""
        job.status = JobStatus.DEAD.value
        job.attempts = (job.attempts or 0) + 1
        job.last_error = error[:1000]
        job.updated_at = utcnow()
        self.db.flush()

    def mark_failed(self, job: ScheduledJob, error: str) -> bool:
        """
        Increment attempt counters and reschedule a job after a failure.

        Returns True when the job exhausted its attempts and is now dead.
        """

        try:
            attempts = (job.attempts or 0) + 1
            max_attempts = settings.jobs_max_attempts
            job.attempts = attempts
            job.last_error = error[:1000]
            job.updated_at = utcnow()
            if attempts >= max_attempts:
                job.status = JobStatus.DEAD.value
                self.db.flush()
                return True

            backoff_seconds = min(
                settings.jobs_backoff_cap, settings.jobs_backoff_base * (2 ** (attempts - 1))
            )
            job.status = JobStatus.QUEUED.value
            job.available_at = utcnow() + timedelta(seconds=backoff_seconds)
            self.db.flush()
            return False
        except SQLAlchemyError as exc:
            self.logger.error("Failed to reschedule job %s: %s", job.job_key, str(exc))
            raise RepositoryException("Failed to reschedule job") from exc

    def count_dead(self) -> int:
        return int(
            self.db.query(ScheduledJob).filter(ScheduledJob.status == JobStatus.DEAD.value).count()
        )

    def requeue_stale(self, cutoff: datetime) -> int:
        """Return jobs left ``running`` since before ``cutoff`` to the queue."""

        try:
            result = self.db.execute(
                ScheduledJob.__table__.update()
                .where(
                    ScheduledJob.status == JobStatus.RUNNING.value,
                    ScheduledJob.updated_at < cutoff,
                )
                .values(status=JobStatus.QUEUED.value, available_at=utcnow(), updated_at=utcnow())
            )
            count = int(result.rowcount or 0)
            if count:
                self.logger.warning("Requeued %s stale running jobs", count)
            return count
        except SQLAlchemyError as exc:
            self.logger.error("Failed to requeue stale jobs: %s", str(exc))
            raise RepositoryException("Failed to requeue stale jobs") from exc
