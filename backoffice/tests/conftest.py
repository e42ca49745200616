"""
Centralized Test Configuration.
"""

import pytest
from datetime import datetime, timedelta, timezone
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from backoffice.app.main import app
from backoffice.app.db.session import get_db, Base
from backoffice.app.domain.ledger import ledger_service as ledger_service_module
from backoffice.app.domain.ledger.ledger_service import LedgerService, running_balances
from backoffice.app.domain.ledger.locking import CustomerLockRegistry
from backoffice.app.domain.ledger.ordering import CANONICAL_ORDER, to_money
from backoffice.app.models.customer import Customer
from backoffice.app.models.ledger_entry import LedgerEntry

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


class FakeClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


class ClockSequence:
    """Clock returning a fixed sequence of instants."""

    def __init__(self, *instants: datetime):
        self.instants = list(instants)

    def __call__(self) -> datetime:
        return self.instants.pop(0)


@pytest.fixture(scope="session", autouse=True)
def apply_overrides():
    """Point the app at the in-memory database for the whole session."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def fresh_customer_locks(monkeypatch):
    """asyncio locks are bound to one event loop; give every test its own registry."""
    registry = CustomerLockRegistry()
    monkeypatch.setattr(ledger_service_module, "customer_locks", registry)
    return registry


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def session_factory():
    return TestingSessionLocal


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def locks(fresh_customer_locks):
    return fresh_customer_locks


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(db_session, locks, clock):
    return LedgerService(db_session, locks=locks, clock=clock)


@pytest.fixture
def make_customer(db_session):
    async def _make(name="Acme Traders", email=None, company=None):
        customer = Customer(
            name=name,
            email=email or f"{name.lower().replace(' ', '.')}@acme.io",
            company=company,
        )
        db_session.add(customer)
        await db_session.commit()
        return customer
    return _make


@pytest.fixture
async def customer(make_customer):
    return await make_customer("Acme Traders", company="Acme Ltd")


@pytest.fixture
def check_balances(db_session):
    """Assert every stored balance equals the from-scratch running balance."""

    async def _check(customer_id, cancelled_ids=()):
        result = await db_session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.customer_id == customer_id)
            .order_by(*CANONICAL_ORDER)
            .execution_options(populate_existing=True)
        )
        entries = list(result.scalars().all())
        for entry, expected in running_balances(entries, set(cancelled_ids)):
            assert to_money(entry.balance) == expected, (
                f"entry {entry.id} ({entry.transaction_number}) stored {entry.balance}, expected {expected}"
            )
        return entries
    return _check
