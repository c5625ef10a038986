"""
Outbox relay.

Delivers committed ledger events to the notification collaborator. Events are
only visible here after the transaction that produced them commits, so a
rolled back release or cancellation never notifies anyone.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from sqlalchemy.orm import Session

from ..core.config import settings
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory

logger = logging.getLogger(__name__)

MAX_DELIVERY_ATTEMPTS = 5
BACKOFF_SECONDS = [30, 120, 600, 1800, 7200]


def _next_backoff(attempt_number: int) -> int:
    """Return backoff delay for the given attempt (1-indexed)."""
    index = max(0, min(attempt_number - 1, len(BACKOFF_SECONDS) - 1))
    return BACKOFF_SECONDS[index]


class NotificationSink(Protocol):
    def send(self, *, event_type: str, payload: Dict[str, Any], idempotency_key: str) -> None:
        ...


class OutboxRelay:
    """Hands pending outbox rows to a sink and records the outcome per row."""

    def __init__(self, db: Session, sink: NotificationSink):
        self.db = db
        self.sink = sink
        self.outbox_repository = RepositoryFactory.create_event_outbox_repository(db)

    def relay(self, limit: Optional[int] = None) -> Dict[str, int]:
        counts = {"sent": 0, "retrying": 0, "failed": 0}
        events = self.outbox_repository.fetch_pending(limit=limit or settings.outbox_batch)
        for event in events:
            attempt_number = int(event.attempt_count or 0) + 1
            try:
                self.sink.send(
                    event_type=event.event_type,
                    payload=dict(event.payload or {}),
                    idempotency_key=event.idempotency_key,
                )
            except Exception as exc:
                terminal = attempt_number >= MAX_DELIVERY_ATTEMPTS
                self.outbox_repository.mark_failed(
                    event.id,
                    attempt_count=attempt_number,
                    backoff_seconds=_next_backoff(attempt_number),
                    error=str(exc),
                    terminal=terminal,
                )
                if terminal:
                    counts["failed"] += 1
                    prometheus_metrics.record_outbox_outcome(event.event_type, "failed")
                    logger.error(
                        "Outbox event %s failed after %s attempts", event.id, attempt_number
                    )
                else:
                    counts["retrying"] += 1
                    logger.warning(
                        "Retrying outbox event %s attempt=%s", event.id, attempt_number
                    )
                continue

            self.outbox_repository.mark_sent(event.id, attempt_number)
            counts["sent"] += 1
            prometheus_metrics.record_outbox_outcome(event.event_type, "sent")
        self.db.commit()
        if events:
            logger.info("Relayed outbox events", extra=counts)
        return counts
