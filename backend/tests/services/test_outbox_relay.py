from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from escrow.events import EventPublisher, PayoutStatusChanged, SessionCancelled
from escrow.models.event_outbox import EventOutbox, EventOutboxStatus
from escrow.repositories.factory import RepositoryFactory
from escrow.services.outbox_relay import MAX_DELIVERY_ATTEMPTS, OutboxRelay, _next_backoff


@pytest.fixture
def publisher(db):
    return EventPublisher(RepositoryFactory.create_event_outbox_repository(db))


def _cancelled(session_id="01HSESSION0000000000000001"):
    return SessionCancelled(
        session_id=session_id,
        cancelled_by="01HMENTEE00000000000000001",
        cancelled_by_role="mentee",
        cancelled_at=datetime(2031, 3, 1, 12, 0, tzinfo=timezone.utc),
        refund_amount_cents=10000,
        refund_percentage=100,
    )


def _row(db, event_type="session_cancelled"):
    db.expire_all()
    return db.query(EventOutbox).filter_by(event_type=event_type).one()


class TestPublisher:
    def test_same_event_is_queued_once(self, db, publisher):
        publisher.publish(_cancelled())
        publisher.publish(_cancelled())
        db.commit()

        assert db.query(EventOutbox).count() == 1
        row = _row(db)
        assert row.payload["cancelled_at"] == "2031-03-01T12:00:00+00:00"
        assert row.idempotency_key == "session_cancelled:01HSESSION0000000000000001"


class TestRelay:
    def test_sends_pending_events(self, db, publisher):
        publisher.publish(_cancelled())
        publisher.publish(
            PayoutStatusChanged(
                payout_id="01HPAYOUT00000000000000001",
                mentor_id="01HMENTOR00000000000000001",
                status="pending",
                amount_cents=30000,
            )
        )
        db.commit()
        sink = MagicMock()

        counts = OutboxRelay(db, sink).relay()

        assert counts == {"sent": 2, "retrying": 0, "failed": 0}
        assert sink.send.call_count == 2
        sink.send.assert_any_call(
            event_type="payout_status_changed",
            payload={
                "payout_id": "01HPAYOUT00000000000000001",
                "mentor_id": "01HMENTOR00000000000000001",
                "status": "pending",
                "amount_cents": 30000,
            },
            idempotency_key="payout_status_changed:01HPAYOUT00000000000000001:pending",
        )
        assert _row(db).status == EventOutboxStatus.SENT.value
        assert OutboxRelay(db, sink).relay() == {"sent": 0, "retrying": 0, "failed": 0}

    def test_failed_delivery_is_retried_later(self, db, publisher):
        publisher.publish(_cancelled())
        db.commit()
        sink = MagicMock()
        sink.send.side_effect = ConnectionError("broker down")

        assert OutboxRelay(db, sink).relay() == {"sent": 0, "retrying": 1, "failed": 0}

        row = _row(db)
        assert row.status == EventOutboxStatus.PENDING.value
        assert row.attempt_count == 1
        assert row.last_error == "broker down"
        # Backed off, so not picked up again straight away.
        assert OutboxRelay(db, sink).relay()["retrying"] == 0

    def test_gives_up_after_max_attempts(self, db, publisher):
        event = publisher.publish(_cancelled())
        event.attempt_count = MAX_DELIVERY_ATTEMPTS - 1
        db.commit()
        sink = MagicMock()
        sink.send.side_effect = ConnectionError("broker down")

        assert OutboxRelay(db, sink).relay() == {"sent": 0, "retrying": 0, "failed": 1}
        assert _row(db).status == EventOutboxStatus.FAILED.value


@pytest.mark.parametrize(
    "attempt,expected", [(1, 30), (2, 120), (5, 7200), (9, 7200), (0, 30)]
)
def test_next_backoff(attempt, expected):
    assert _next_backoff(attempt) == expected
