"""
Celery tasks for the escrow engine.

``dispatch_due_jobs`` runs on a beat schedule and fans due scheduled jobs out
to ``execute_job``; each job is claimed in the database, so a key that is
delivered twice runs once. ``relay_outbox_events`` forwards committed ledger
events to the notifications queue.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, ParamSpec, Protocol, TypeVar, cast

from celery.result import AsyncResult
from celery.utils.log import get_task_logger

from ..database.sessions import get_worker_session
from ..services.job_handlers import build_job_scheduler
from ..services.outbox_relay import OutboxRelay
from .celery_app import NOTIFICATIONS_QUEUE, PAYMENTS_QUEUE, celery_app

logger = get_task_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R", covariant=True)

NOTIFICATION_TASK_PREFIX = "escrow.notifications"


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


class CeleryNotificationSink:
    """Forwards ledger events to the notification workers by task name."""

    def send(self, *, event_type: str, payload: Dict[str, Any], idempotency_key: str) -> None:
        celery_app.send_task(
            f"{NOTIFICATION_TASK_PREFIX}.{event_type}",
            kwargs={"payload": payload, "idempotency_key": idempotency_key},
            queue=NOTIFICATIONS_QUEUE,
        )


@typed_task(name="escrow.tasks.escrow_tasks.dispatch_due_jobs", queue=PAYMENTS_QUEUE)
def dispatch_due_jobs(limit: Optional[int] = None) -> int:
    """Enqueue ``execute_job`` for every due job; returns how many were enqueued."""
    with get_worker_session() as db:
        keys = build_job_scheduler(db).due_job_keys(limit)
    for job_key in keys:
        execute_job.apply_async((job_key,), queue=PAYMENTS_QUEUE)
    if keys:
        logger.info("Dispatched %s due escrow jobs", len(keys))
    return len(keys)


@typed_task(name="escrow.tasks.escrow_tasks.execute_job", queue=PAYMENTS_QUEUE)
def execute_job(job_key: str) -> Optional[str]:
    """Run one scheduled job; handler failures are retried by the scheduler itself."""
    with get_worker_session() as db:
        status = build_job_scheduler(db).execute(job_key)
    logger.info("Escrow job %s finished with status %s", job_key, status)
    return status


@typed_task(name="escrow.tasks.escrow_tasks.relay_outbox_events", queue=PAYMENTS_QUEUE)
def relay_outbox_events(limit: Optional[int] = None) -> Dict[str, int]:
    with get_worker_session() as db:
        return OutboxRelay(db, CeleryNotificationSink()).relay(limit)
