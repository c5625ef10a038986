# backend/escrow/tasks/beat_schedule.py
"""
Celery Beat schedule for the escrow engine.

Beat only wakes the dispatchers; what is due lives in the scheduled_jobs and
event_outbox tables.
"""

from datetime import timedelta
from typing import Any

from celery.schedules import crontab

CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    # Release payouts, expire unpaid bookings and stale reschedule requests
    "dispatch-due-escrow-jobs": {
        "task": "escrow.tasks.escrow_tasks.dispatch_due_jobs",
        "schedule": crontab(minute="*"),
        "options": {"queue": "payments", "priority": 9},
    },
    "relay-outbox-events": {
        "task": "escrow.tasks.escrow_tasks.relay_outbox_events",
        "schedule": timedelta(seconds=30),
        "options": {"queue": "payments", "priority": 5},
    },
}

SCHEDULE_CONFIG: dict[str, dict[str, dict[str, Any]]] = {
    "test": {
        "dispatch-due-escrow-jobs": {
            "task": "escrow.tasks.escrow_tasks.dispatch_due_jobs",
            "schedule": timedelta(seconds=10),
            "options": {"queue": "payments"},
        },
    },
}


def get_beat_schedule(environment: str = "production") -> dict[str, dict[str, Any]]:
    """Return the base schedule with any overrides for ``environment``."""
    base: dict[str, dict[str, Any]] = dict(CELERYBEAT_SCHEDULE)
    overrides = SCHEDULE_CONFIG.get(environment)
    if overrides:
        base.update(overrides)
    return base
