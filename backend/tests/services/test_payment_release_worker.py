from datetime import timedelta
from unittest.mock import patch

import pytest

from escrow.core.exceptions import (
    InsufficientPendingBalanceException,
    ReleaseIntegrityException,
)
from escrow.core.timezone_utils import ensure_utc
from escrow.events import EventPublisher
from escrow.models.event_outbox import EventOutbox
from escrow.models.mentor_balance import MentorBalance
from escrow.models.session_dispute import DisputeReason, DisputeStatus
from escrow.repositories.factory import RepositoryFactory
from escrow.services.dispute_guard import DisputeGuard
from escrow.services.mentor_balance_ledger import MentorBalanceLedger
from escrow.services.payment_ledger import PaymentLedger
from escrow.services.payment_release_worker import PaymentReleaseWorker, ReleaseOutcome
from tests.conftest import MENTEE_ID, MENTOR_ID


@pytest.fixture
def worker(db):
    publisher = EventPublisher(RepositoryFactory.create_event_outbox_repository(db))
    payment_ledger = PaymentLedger(db)
    balance_ledger = MentorBalanceLedger(db)
    guard = DisputeGuard(
        db, payment_ledger=payment_ledger, balance_ledger=balance_ledger, publisher=publisher
    )
    return PaymentReleaseWorker(db, payment_ledger, balance_ledger, guard, publisher)


def _events(db, session_id):
    return [
        row.event_type
        for row in db.query(EventOutbox).filter_by(aggregate_id=session_id).order_by(EventOutbox.id)
    ]


class TestRelease:
    def test_release_moves_mentor_share_to_available(self, escrow, worker, db):
        session = escrow.completed(price_cents=10000)

        assert worker.execute(session.id) == ReleaseOutcome.RELEASED

        balance = worker.balance_ledger.get_balance(MENTOR_ID)
        assert balance["pending_balance_cents"] == 0
        assert balance["available_balance_cents"] == 8500
        assert balance["total_earnings_cents"] == 8500
        payment = escrow.payments.get_payment(session.payment_id)
        assert payment.is_released_to_mentor is True
        assert payment.released_at is not None
        assert "payment_released" in _events(db, session.id)

    def test_second_release_is_a_no_op(self, escrow, worker, db):
        session = escrow.completed(price_cents=10000)
        worker.execute(session.id)

        assert worker.execute(session.id) == ReleaseOutcome.ALREADY_RELEASED

        balance = worker.balance_ledger.get_balance(MENTOR_ID)
        assert balance["available_balance_cents"] == 8500
        assert _events(db, session.id).count("payment_released") == 1

    def test_releases_for_two_sessions_accumulate(self, escrow, worker):
        first = escrow.completed(price_cents=10000)
        second = escrow.completed(price_cents=20000)

        worker.execute(first.id)
        worker.execute(second.id)

        balance = worker.balance_ledger.get_balance(MENTOR_ID)
        assert balance["available_balance_cents"] == 8500 + 17000
        assert balance["pending_balance_cents"] == 0


class TestBlockedByDispute:
    def test_open_dispute_blocks_release(self, escrow, worker, db):
        session = escrow.completed(price_cents=10000)
        worker.dispute_guard.open(
            session.id,
            MENTEE_ID,
            "mentor_no_show",
            now=ensure_utc(session.completed_at) + timedelta(hours=1),
        )

        assert worker.execute(session.id) == ReleaseOutcome.BLOCKED

        balance = worker.balance_ledger.get_balance(MENTOR_ID)
        assert balance["pending_balance_cents"] == 8500
        assert balance["available_balance_cents"] == 0
        assert escrow.payments.get_payment(session.payment_id).is_released_to_mentor is False
        assert _events(db, session.id) == ["release_blocked_by_dispute"]

    def test_dispute_under_review_still_blocks(self, escrow, worker):
        session = escrow.completed()
        dispute = worker.dispute_guard.open(
            session.id,
            MENTEE_ID,
            "technical_issues",
            now=ensure_utc(session.completed_at) + timedelta(hours=1),
        )
        worker.dispute_guard.start_review(dispute.id)

        assert worker.execute(session.id) == ReleaseOutcome.BLOCKED

    def test_dispute_landing_while_waiting_for_payment_lock_blocks(self, escrow, worker):
        session = escrow.completed(price_cents=10000)
        repository = worker.payment_ledger.payment_repository
        load_payment = repository.get_by_id

        def dispute_then_lock(payment_id, for_update=False):
            if for_update:
                worker.dispute_guard.dispute_repository.create(
                    session_id=session.id,
                    mentee_id=MENTEE_ID,
                    reason=DisputeReason.MENTOR_NO_SHOW.value,
                    status=DisputeStatus.PENDING.value,
                )
            return load_payment(payment_id, for_update=for_update)

        with patch.object(repository, "get_by_id", side_effect=dispute_then_lock):
            assert worker.execute(session.id) == ReleaseOutcome.BLOCKED

        assert escrow.payments.get_payment(session.payment_id).is_released_to_mentor is False
        balance = worker.balance_ledger.get_balance(MENTOR_ID)
        assert balance["pending_balance_cents"] == 8500
        assert balance["available_balance_cents"] == 0


class TestIntegrity:
    def test_missing_session(self, worker):
        with pytest.raises(ReleaseIntegrityException):
            worker.execute("01HMISSING0000000000000000")

    def test_session_not_completed(self, escrow, worker):
        session = escrow.confirmed()
        with pytest.raises(ReleaseIntegrityException):
            worker.execute(session.id)

    def test_pending_short_of_payout(self, escrow, worker, db):
        session = escrow.completed(price_cents=10000)
        db.query(MentorBalance).filter_by(mentor_id=MENTOR_ID).update(
            {MentorBalance.pending_balance_cents: 1000}, synchronize_session="fetch"
        )
        db.commit()

        with pytest.raises(InsufficientPendingBalanceException):
            worker.execute(session.id)

        assert escrow.payments.get_payment(session.payment_id).is_released_to_mentor is False
        balance = worker.balance_ledger.get_balance(MENTOR_ID)
        assert balance["available_balance_cents"] == 0


class TestAfterRefund:
    def test_full_refund_leaves_nothing_to_release(self, escrow, worker):
        session = escrow.completed(price_cents=10000)
        dispute = worker.dispute_guard.open(
            session.id,
            MENTEE_ID,
            "mentor_no_show",
            now=ensure_utc(session.completed_at) + timedelta(hours=1),
        )
        worker.dispute_guard.resolve(dispute.id, "full_refund", "01HADMIN000000000000000001")

        assert worker.execute(session.id) == ReleaseOutcome.NOTHING_TO_RELEASE
        balance = worker.balance_ledger.get_balance(MENTOR_ID)
        assert balance["available_balance_cents"] == 0
        assert balance["pending_balance_cents"] == 0

    def test_partial_refund_releases_remainder(self, escrow, worker):
        session = escrow.completed(price_cents=10000)
        dispute = worker.dispute_guard.open(
            session.id,
            MENTEE_ID,
            "session_ended_early",
            now=ensure_utc(session.completed_at) + timedelta(hours=1),
        )
        worker.dispute_guard.resolve(
            dispute.id, "partial_refund", "01HADMIN000000000000000001", refund_amount_cents=4000
        )

        assert worker.execute(session.id) == ReleaseOutcome.RELEASED
        balance = worker.balance_ledger.get_balance(MENTOR_ID)
        # 4000 refunded, 3400 of it from the mentor's 8500 share
        assert balance["available_balance_cents"] == 5100
        assert balance["pending_balance_cents"] == 0
        assert balance["total_earnings_cents"] == 8500
