"""
Durable job scheduler.

Jobs are rows keyed by a natural ``job_key`` (``payment_release:<session>``,
``payment_timeout:<session>``, ``reschedule_expiry:<request>``). Scheduling a
key again re-arms the same row, so callers never have to cancel a job; a
handler whose preconditions no longer hold simply does nothing.

Execution follows the dispatcher loop used for background jobs elsewhere:
claim, run the handler, mark succeeded and commit. Failures roll back the
handler's work, then either back off and retry or park the job as dead.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import IntegrityException, NotFoundException, ValidationException
from ..core.timezone_utils import ensure_utc, utcnow
from ..models.scheduled_job import JobStatus, JobType, ScheduledJob
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

JobHandler = Callable[[Dict[str, Any]], Any]


def release_job_key(session_id: str) -> str:
    return f"{JobType.PAYMENT_RELEASE.value}:{session_id}"


def payment_timeout_job_key(session_id: str) -> str:
    return f"{JobType.PAYMENT_TIMEOUT.value}:{session_id}"


def reschedule_expiry_job_key(request_id: str) -> str:
    return f"{JobType.RESCHEDULE_EXPIRY.value}:{request_id}"


class JobScheduler(BaseService):
    """Schedules and runs keyed jobs against registered handlers."""

    def __init__(self, db: Session, handlers: Optional[Mapping[str, JobHandler]] = None):
        super().__init__(db)
        self.job_repository = RepositoryFactory.create_scheduled_job_repository(db)
        self.handlers: Dict[str, JobHandler] = dict(handlers or {})

    def register(self, job_type: JobType | str, handler: JobHandler) -> None:
        self.handlers[JobType(job_type).value] = handler

    def schedule(
        self,
        job_key: str,
        job_type: JobType | str,
        due_at: datetime,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ScheduledJob:
        """
        Queue ``job_key`` to run at ``due_at``.

        Joins the caller's transaction, so a job is only durable once the
        state change that scheduled it commits.
        """
        job_type = JobType(job_type)
        with self.transaction():
            job = self.job_repository.upsert(
                job_key=job_key,
                job_type=job_type.value,
                payload=payload or {},
                available_at=ensure_utc(due_at),
            )
        self.logger.info(
            "Scheduled job",
            extra={"job_key": job_key, "job_type": job_type.value, "due_at": due_at.isoformat()},
        )
        return job

    def execute(self, job_key: str) -> Optional[str]:
        """
        Run one job by key.

        Returns the job's final status, or None when the job was not queued
        (already claimed by another worker, finished, or dead).
        """
        job = self.job_repository.get_by_key(job_key)
        if job is None:
            raise NotFoundException(f"Scheduled job {job_key} not found", code="JOB_NOT_FOUND")
        if not self.job_repository.claim(job):
            self.db.rollback()
            self.logger.info("Job %s not claimable (status=%s)", job_key, job.status)
            return None
        self.db.commit()
        return self._run_claimed(job)

    def _requeue_stale(self) -> None:
        cutoff = utcnow() - timedelta(seconds=settings.jobs_running_timeout_seconds)
        self.job_repository.requeue_stale(cutoff)

    def due_job_keys(self, limit: Optional[int] = None) -> List[str]:
        """Keys of queued jobs that are due, oldest first."""
        self._requeue_stale()
        jobs = self.job_repository.fetch_due(limit=max(1, int(limit or settings.jobs_batch)))
        return [str(job.job_key) for job in jobs]

    def run_due(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """Execute queued jobs whose due time has passed; returns how many ran."""
        batch_size = max(1, int(limit or settings.jobs_batch))
        self._requeue_stale()

        jobs = self.job_repository.fetch_due(limit=batch_size, now=now)
        if not jobs:
            self.db.commit()
            return 0

        claimed = [job for job in jobs if self.job_repository.claim(job)]
        self.db.commit()
        for job in claimed:
            self._run_claimed(job)
        prometheus_metrics.set_dead_jobs(self.job_repository.count_dead())
        return len(claimed)

    def _run_claimed(self, job: ScheduledJob) -> str:
        job_key = str(job.job_key)
        job_type = str(job.job_type)
        handler = self.handlers.get(job_type)
        try:
            if handler is None:
                raise ValidationException(
                    f"No handler registered for job type {job_type}", code="UNKNOWN_JOB_TYPE"
                )
            with self.transaction():
                handler(dict(job.payload or {}))
                self.job_repository.mark_succeeded(job)
            return JobStatus.SUCCEEDED.value
        except IntegrityException as exc:
            self.db.rollback()
            logger.error(
                "Scheduled job hit a ledger integrity error; not retrying",
                extra={"job_key": job_key, "type": job_type, "code": exc.code, **exc.details},
            )
            prometheus_metrics.record_job_failure(job_type)
            self.job_repository.mark_dead(job, f"{exc.code}: {exc.message}")
            self.db.commit()
            prometheus_metrics.set_dead_jobs(self.job_repository.count_dead())
            return JobStatus.DEAD.value
        except Exception as exc:
            self.db.rollback()
            logger.exception(
                "Error processing scheduled job",
                extra={"job_key": job_key, "type": job_type, "attempts": job.attempts},
            )
            prometheus_metrics.record_job_failure(job_type)
            terminal = self.job_repository.mark_failed(job, str(exc))
            if terminal:
                logger.error(
                    "Scheduled job moved to dead-letter state",
                    extra={"job_key": job_key, "type": job_type, "attempts": job.attempts},
                )
            self.db.commit()
            prometheus_metrics.set_dead_jobs(self.job_repository.count_dead())
            return JobStatus.DEAD.value if terminal else JobStatus.QUEUED.value
