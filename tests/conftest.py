"""Shared test fixtures."""
from datetime import datetime
from decimal import Decimal
from typing import Generator, List

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from splitsync.config import Settings
from splitsync.models.entities import Group, Payment, PaymentSplit, User
from splitsync.models.feed import CachedTransaction, KeyValueEntry  # noqa: F401
from splitsync.models.sync import SyncLog, SyncMetadata, SyncStatus  # noqa: F401
from splitsync.timeutils import from_ms

T0 = 1_736_935_200_000  # 2025-01-15 10:00:00 UTC


class FakeClock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms

    @property
    def dt(self) -> datetime:
        return from_ms(self.now)


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    """Defaults, minus the pauses and backoff delays."""
    return Settings(
        database_url="sqlite://",
        sync_batch_pause_ms=0,
        retry_initial_delay_ms=0,
        retry_max_delay_ms=0,
    )


@pytest.fixture(name="seeded_users")
def seeded_users_fixture(test_session: Session) -> List[User]:
    """Three users already known to the server (server ids 101-103)."""
    users = [
        User(username=name, server_id=101 + i, sync_status=SyncStatus.SYNCED,
             updated_at=datetime(2025, 1, 1))
        for i, name in enumerate(["alice", "bob", "carol"])
    ]
    test_session.add_all(users)
    test_session.commit()
    for user in users:
        test_session.refresh(user)
    return users


@pytest.fixture(name="seeded_group")
def seeded_group_fixture(test_session: Session) -> Group:
    group = Group(name="Flat", server_id=201, sync_status=SyncStatus.SYNCED,
                  updated_at=datetime(2025, 1, 1))
    test_session.add(group)
    test_session.commit()
    test_session.refresh(group)
    return group


@pytest.fixture(name="seeded_payment")
def seeded_payment_fixture(test_session: Session, seeded_users, seeded_group) -> Payment:
    """A synced 100.00 GBP payment split equally three ways."""
    payment = Payment(
        group_id=seeded_group.id,
        paid_by_user_id=seeded_users[0].id,
        amount=Decimal("100.00"),
        currency="GBP",
        split_mode="equally",
        description="Groceries",
        payment_date=datetime(2025, 1, 10),
        server_id=301,
        sync_status=SyncStatus.SYNCED,
        updated_at=datetime(2025, 1, 10),
    )
    test_session.add(payment)
    test_session.commit()
    test_session.refresh(payment)

    for i, (user, amount) in enumerate(zip(seeded_users, ["33.34", "33.33", "33.33"])):
        test_session.add(PaymentSplit(
            payment_id=payment.id,
            user_id=user.id,
            amount=Decimal(amount),
            currency="GBP",
            server_id=401 + i,
            sync_status=SyncStatus.SYNCED,
            updated_at=datetime(2025, 1, 10),
        ))
    test_session.commit()
    return payment
