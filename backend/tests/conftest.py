"""Shared test fixtures for all test modules."""

import contextlib
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import meterpay.models  # noqa: F401  (registers every table on Base.metadata)
from meterpay.core import database as db_module
from meterpay.core.database import Base, get_db
from meterpay.services.stripe_client import StripeClient

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)

# Well-known owner reference used across all tests
DEFAULT_OWNER_ID = "owner-0001"


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database. Clears data after each test.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture
def db_session():
    """Create a database session for direct testing."""
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


@pytest.fixture
def owner_id():
    """Return the default owner reference for tests."""
    return DEFAULT_OWNER_ID


class FakeStripeError(Exception):
    """Stands in for ``stripe.error.StripeError`` on the mocked SDK."""

    user_message = "card declined"


@pytest.fixture
def stripe_client():
    """StripeClient whose SDK module is a MagicMock."""
    client = StripeClient(api_key="sk_test_123")
    client._stripe = MagicMock()
    client._stripe.error.StripeError = FakeStripeError
    client._stripe.error.SignatureVerificationError = FakeStripeError
    return client


@pytest.fixture
def stripe_error():
    """The exception class the mocked SDK raises for processor failures."""
    return FakeStripeError
