"""Shared test fixtures for the settlement service tests.

Uses a file-backed SQLite database so tests run without PostgreSQL.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

# Override settings before importing anything from app: Settings reads
# .env eagerly via pydantic-settings, and the module-level
# ``engine`` in app.core.database would try to connect to PostgreSQL.
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["WEBHOOK_SECRET"] = "test-webhook-secret"

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from app.api.deps import get_payout_provider, get_provider_factory, get_session_factory
from app.core.database import Base, get_db
from app.main import app
from app.models.store import Store
from app.schemas.provider import ProviderBalance
from app.services.webhooks.signature import compute_signature

TEST_DATABASE_URL = "sqlite:///./test.db"
WEBHOOK_SECRET = "test-webhook-secret"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)


@event.listens_for(engine, "connect")
def _set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeProvider:
    """Scriptable PayoutProvider.

    Queue outcomes with ``payout_results``: a string is returned as the
    payout id, any exception is raised.  ``cancel_error`` is raised by
    ``cancel_payout`` when set.
    """

    def __init__(self) -> None:
        self.payout_results: list[Any] = []
        self.payout_calls: list[tuple[str, Decimal, str]] = []
        self.seller_calls: list[dict[str, Any]] = []
        self.seller_id = "prov-seller-1"
        self.cancel_calls: list[str] = []
        self.cancel_error: Optional[Exception] = None
        self.balance = ProviderBalance(available_amount=Decimal("1000.00"), pending_amount=Decimal("250.00"))

    def register_seller(self, details: dict[str, Any]) -> str:
        self.seller_calls.append(details)
        return self.seller_id

    def request_payout(self, destination: str, amount: Decimal, idempotency_key: str) -> str:
        self.payout_calls.append((destination, amount, idempotency_key))
        outcome = self.payout_results.pop(0) if self.payout_results else f"po-{len(self.payout_calls)}"
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def get_balance(self) -> ProviderBalance:
        return self.balance

    def cancel_payout(self, payout_id: str) -> None:
        self.cancel_calls.append(payout_id)
        if self.cancel_error is not None:
            raise self.cancel_error


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db_session):
    """Open extra sessions on the same database (for concurrency tests)."""
    opened = []

    def _factory():
        session = TestingSessionLocal()
        opened.append(session)
        return session

    yield _factory
    for session in opened:
        session.close()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_store(db_session):
    def _make(store_id: str = "store-1", name: str = "Station Lockers") -> Store:
        store = Store(id=store_id, name=name)
        db_session.add(store)
        db_session.commit()
        return store

    return _make


@pytest.fixture(scope="function")
def client(db_session, provider):
    """FastAPI test client with overridden DB and provider dependencies."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payout_provider] = lambda: provider
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_provider_factory] = lambda: (lambda: provider)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def iso_now(offset_seconds: float = 0) -> str:
    now = datetime.now(timezone.utc).timestamp() + offset_seconds
    return datetime.fromtimestamp(now, tz=timezone.utc).isoformat()


def make_event(
    event_type: str,
    data: dict[str, Any],
    event_id: str = "evt-1",
    timestamp: Optional[Any] = None,
) -> bytes:
    """Serialize a provider webhook envelope."""
    body = {
        "eventId": event_id,
        "eventType": event_type,
        "timestamp": timestamp if timestamp is not None else iso_now(),
        "data": data,
    }
    return json.dumps(body).encode("utf-8")


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(secret, body)
