import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from home_services.database import Base

# Import models so Base.metadata is populated for create_all.
import home_services.models  # noqa: F401
from tests.unit._ledger_helpers import (
    FIXED_NOW,
    FrozenClock,
    LedgerFactory,
    RecordingDispatcher,
)


@pytest.fixture(scope="session")
def _unit_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite defers BEGIN until the first DML statement, which turns the
    # session's SAVEPOINT into the outermost transaction. Emit BEGIN ourselves.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def unit_db(_unit_engine) -> Session:
    """
    Provide a session whose commits only release a savepoint.

    Services commit and roll back as in production; everything is discarded
    when the outer connection transaction rolls back after the test.
    """
    connection = _unit_engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        join_transaction_mode="create_savepoint",
        expire_on_commit=False,
        autoflush=False,
    )
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(FIXED_NOW)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def ledger(unit_db) -> LedgerFactory:
    return LedgerFactory(unit_db)
