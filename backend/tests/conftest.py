"""
Shared fixtures for the escrow test suite.

Tests run against an in-memory SQLite engine. Each test gets its own outer
transaction that is rolled back at teardown; service commits and rollbacks
act on savepoints inside it, so services can be exercised unmodified.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from escrow.core.timezone_utils import ensure_utc
from escrow.database import Base

# Import models so Base.metadata is populated for create_all.
import escrow.models  # noqa: F401
from escrow.models.mentorship_session import MentorshipSession
from escrow.models.time_slot import TimeSlot
from escrow.services.payment_ledger import PaymentLedger
from escrow.services.session_service import SessionService

BASE_TIME = datetime(2031, 3, 3, 9, 0, tzinfo=timezone.utc)
MENTEE_ID = "01HMENTEE00000000000000001"
MENTOR_ID = "01HMENTOR00000000000000001"
OTHER_MENTOR_ID = "01HMENTOR00000000000000002"


@pytest.fixture(scope="session")
def _engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite defers BEGIN; emit it ourselves so SAVEPOINTs nest correctly.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(_engine) -> Session:
    connection = _engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        join_transaction_mode="create_savepoint",
        expire_on_commit=False,
    )
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


class EscrowFactory:
    """Builds sessions in a given lifecycle state through the real services."""

    def __init__(self, db: Session):
        self.db = db
        self.sessions = SessionService(db)
        self.payments = PaymentLedger(db)
        self._txn_counter = 0
        self._slot_counter = 0

    def slot(
        self,
        start: Optional[datetime] = None,
        mentor_id: str = MENTOR_ID,
        duration_minutes: int = 60,
    ) -> TimeSlot:
        if start is None:
            self._slot_counter += 1
            start = BASE_TIME + timedelta(days=5, hours=2 * self._slot_counter)
        slot = TimeSlot(
            mentor_id=mentor_id,
            start_time=start,
            duration_minutes=duration_minutes,
            is_booked=False,
        )
        self.db.add(slot)
        self.db.commit()
        return slot

    def booked(
        self,
        price_cents: int = 10000,
        start: Optional[datetime] = None,
        mentee_id: str = MENTEE_ID,
        mentor_id: str = MENTOR_ID,
    ) -> MentorshipSession:
        slot = self.slot(start=start, mentor_id=mentor_id)
        return self.sessions.book(
            mentee_id=mentee_id,
            mentor_id=mentor_id,
            time_slot_id=slot.id,
            price_cents=price_cents,
            provider="stripe",
            now=BASE_TIME,
        )

    def capture(self, session: MentorshipSession) -> None:
        self._txn_counter += 1
        self.payments.mark_captured(session.payment_id, f"txn_{self._txn_counter}")

    def confirmed(self, price_cents: int = 10000, **kwargs) -> MentorshipSession:
        session = self.booked(price_cents=price_cents, **kwargs)
        self.capture(session)
        return self.sessions.confirm_payment(session.id)

    def completed(self, price_cents: int = 10000, **kwargs) -> MentorshipSession:
        session = self.confirmed(price_cents=price_cents, **kwargs)
        return self.sessions.complete(session.id, now=ensure_utc(session.scheduled_end_time))


@pytest.fixture
def escrow(db) -> EscrowFactory:
    return EscrowFactory(db)
