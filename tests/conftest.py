"""Shared test fixtures."""

from collections.abc import Generator
from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import crowdpulse.database as db_module
from crowdpulse.accounts.models import User
from crowdpulse.accounts.store import create_user, get_api_key
from crowdpulse.api.deps import get_now
from crowdpulse.database import get_session
from crowdpulse.main import app

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=UTC)


class Clock:
    """Mutable stand-in for the request clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created.

    StaticPool ensures every session uses the same connection,
    so the in-memory database is shared across the test.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    with Session(engine) as s:
        yield s


@pytest.fixture
def clock() -> Clock:
    return Clock(NOW)


@pytest.fixture
def client(engine, clock) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with overridden DB engine, session, and clock."""
    # Patch the module-level engine so lifespan's init_db() uses the test engine.
    original_engine = db_module.engine
    db_module.engine = engine

    def _override_session() -> Generator[Session, None, None]:
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_now] = lambda: clock.now
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    db_module.engine = original_engine


@pytest.fixture
def alice(session: Session) -> User:
    return create_user(session, "alice@example.com", "Alice")


@pytest.fixture
def bob(session: Session) -> User:
    return create_user(session, "bob@example.com", "Bob")


@pytest.fixture
def alice_key(session: Session, alice: User) -> str:
    return get_api_key(session, alice).api_key


@pytest.fixture
def bob_key(session: Session, bob: User) -> str:
    return get_api_key(session, bob).api_key
