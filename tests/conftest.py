"""Pytest configuration and fixtures."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.main import app
from app.models.ledger import BankAccount, Base, Category, Transaction

BASE_DATE = date(2026, 1, 15)


@pytest.fixture
async def client():
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def db_engine():
    """Create in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """Create database session for testing."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
async def async_db_engine():
    """Create async SQLite database for testing.

    pysqlite's own transaction handling breaks SAVEPOINT, so BEGIN is
    emitted explicitly.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_db_engine):
    """Create async database session for testing."""
    async_session_maker = async_sessionmaker(
        async_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def failing_execute(async_session, monkeypatch):
    """Make `async_session.execute` raise for statements matching a predicate."""

    def _install(predicate, message="connection lost"):
        original = async_session.execute

        async def execute(statement, *args, **kwargs):
            if predicate(statement):
                raise SQLAlchemyError(message)
            return await original(statement, *args, **kwargs)

        monkeypatch.setattr(async_session, "execute", execute)

    return _install


@pytest.fixture
async def accounts(async_session):
    """Bank accounts: two CAD and one USD for company X, one CAD for company Y."""
    rows = {
        "a": BankAccount(id="acct-a", name="Operating", currency="CAD", company_id="company-x"),
        "b": BankAccount(id="acct-b", name="Savings", currency="CAD", company_id="company-x"),
        "usd": BankAccount(id="acct-usd", name="US Dollar", currency="USD", company_id="company-x"),
        "other": BankAccount(id="acct-y", name="Holding", currency="CAD", company_id="company-y"),
    }
    async_session.add_all(rows.values())
    await async_session.commit()
    return rows


@pytest.fixture
async def transfer_category(async_session):
    """The bank transfer category."""
    category = Category(id="cat-transfer", code="bank_transfer", name="Bank transfer")
    async_session.add(category)
    await async_session.commit()
    return category


def build_transaction(
    account: BankAccount,
    amount,
    transaction_type: str,
    day: int = 0,
    description: str = "Ref 0001",
    **kwargs,
) -> Transaction:
    """Build an unsaved transaction on an account, `day` days after BASE_DATE."""
    amount = Decimal(str(amount))
    return Transaction(
        id=kwargs.pop("id", None) or str(uuid4()),
        bank_account_id=account.id,
        bank_account=account,
        amount=-amount if transaction_type == "debit" else amount,
        total_amount=amount,
        transaction_type=transaction_type,
        transaction_date=BASE_DATE + timedelta(days=day),
        description=description,
        **kwargs,
    )


@pytest.fixture
def make_transaction(async_session):
    """Factory persisting transactions through the async session."""

    async def _make(account, amount, transaction_type, day=0, description="Ref 0001", **kwargs):
        tx = build_transaction(account, amount, transaction_type, day, description, **kwargs)
        async_session.add(tx)
        await async_session.commit()
        return tx

    return _make


@pytest.fixture
def memory_accounts():
    """Unsaved bank accounts for pure matching tests."""
    return {
        "a": BankAccount(id="acct-a", name="Operating", currency="CAD", company_id="company-x"),
        "b": BankAccount(id="acct-b", name="Savings", currency="CAD", company_id="company-x"),
        "usd": BankAccount(id="acct-usd", name="US Dollar", currency="USD", company_id="company-x"),
        "other": BankAccount(id="acct-y", name="Holding", currency="CAD", company_id="company-y"),
        "orphan": BankAccount(id="acct-z", name="Unowned", currency="CAD", company_id=None),
    }


@pytest.fixture
def build_tx():
    """Factory for unsaved transactions."""
    return build_transaction
