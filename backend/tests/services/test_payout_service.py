import pytest

from escrow.core.exceptions import (
    ForbiddenException,
    InsufficientAvailableBalanceException,
    InvalidTransitionException,
    ValidationException,
)
from escrow.models.event_outbox import EventOutbox
from escrow.models.payout import PayoutStatus
from escrow.services.mentor_balance_ledger import MentorBalanceLedger
from escrow.services.payout_service import PayoutService
from tests.conftest import MENTOR_ID, OTHER_MENTOR_ID


@pytest.fixture
def payouts(db):
    ledger = MentorBalanceLedger(db)
    ledger.credit_pending(MENTOR_ID, 100000)
    ledger.release_to_available(MENTOR_ID, 100000)
    db.commit()
    return PayoutService(db, balance_ledger=ledger)


def _available(payouts):
    return payouts.balance_ledger.get_balance(MENTOR_ID)["available_balance_cents"]


class TestRequestPayout:
    def test_request_debits_available(self, payouts):
        payout = payouts.request_payout(MENTOR_ID, 30000)

        assert payout.status == PayoutStatus.PENDING.value
        assert _available(payouts) == 70000
        assert [p.id for p in payouts.list_for_mentor(MENTOR_ID)] == [payout.id]

    @pytest.mark.parametrize("amount", [0, 24999, 10_000_001])
    def test_amount_outside_bounds(self, payouts, amount):
        with pytest.raises(ValidationException):
            payouts.request_payout(MENTOR_ID, amount)
        assert _available(payouts) == 100000

    def test_cannot_exceed_available(self, payouts):
        with pytest.raises(InsufficientAvailableBalanceException):
            payouts.request_payout(MENTOR_ID, 100001)
        assert _available(payouts) == 100000
        assert payouts.list_for_mentor(MENTOR_ID) == []

    def test_mentor_without_balance(self, payouts):
        with pytest.raises(InsufficientAvailableBalanceException):
            payouts.request_payout(OTHER_MENTOR_ID, 25000)


class TestPayoutLifecycle:
    def test_process_then_complete(self, payouts, db):
        payout = payouts.request_payout(MENTOR_ID, 25000)
        payouts.process(payout.id)
        payouts.complete(payout.id)

        assert payout.status == PayoutStatus.COMPLETED.value
        assert payout.processed_at is not None
        assert payout.completed_at is not None
        assert _available(payouts) == 75000
        statuses = [
            row.payload["status"]
            for row in db.query(EventOutbox).filter_by(aggregate_id=payout.id)
        ]
        assert sorted(statuses) == ["completed", "pending", "processing"]

    def test_failed_payout_restores_available(self, payouts):
        payout = payouts.request_payout(MENTOR_ID, 40000)
        payouts.process(payout.id)

        payouts.fail(payout.id, "Bank account closed")

        assert payout.status == PayoutStatus.FAILED.value
        assert payout.failure_reason == "Bank account closed"
        assert _available(payouts) == 100000

    def test_cancel_restores_available(self, payouts):
        payout = payouts.request_payout(MENTOR_ID, 40000)
        payouts.cancel(payout.id, MENTOR_ID)

        assert payout.status == PayoutStatus.CANCELLED.value
        assert _available(payouts) == 100000

    def test_only_owner_cancels(self, payouts):
        payout = payouts.request_payout(MENTOR_ID, 40000)
        with pytest.raises(ForbiddenException):
            payouts.cancel(payout.id, OTHER_MENTOR_ID)
        assert _available(payouts) == 60000

    def test_processing_payout_cannot_be_cancelled(self, payouts):
        payout = payouts.request_payout(MENTOR_ID, 40000)
        payouts.process(payout.id)
        with pytest.raises(InvalidTransitionException):
            payouts.cancel(payout.id, MENTOR_ID)

    def test_completed_payout_cannot_fail(self, payouts):
        payout = payouts.request_payout(MENTOR_ID, 40000)
        payouts.process(payout.id)
        payouts.complete(payout.id)
        with pytest.raises(InvalidTransitionException):
            payouts.fail(payout.id, "late bounce")
        assert _available(payouts) == 60000
