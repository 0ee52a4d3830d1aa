"""
Pytest configuration and fixtures for Pairlog tests.

This module provides shared fixtures for testing database models, repositories,
the ingestion pipeline and the API.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from pairlog.db.connection import enable_sqlite_savepoints, use_json_for_sqlite
from pairlog.models.db import Base, ClientSession, PairSession, User

T0 = datetime(2025, 3, 10, 14, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def test_engine():
    """Create a test database engine using SQLite in-memory."""
    # Use SQLite for tests (faster, no PostgreSQL required)
    use_json_for_sqlite(Base.metadata)

    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={
            "check_same_thread": False
        },  # Allow cross-thread access for TestClient
    )
    # The pipeline relies on SAVEPOINTs for per-event isolation
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """
    Create a new database session for a test.

    Each test gets a fresh session with a transaction that is rolled back
    after the test completes, ensuring test isolation.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = sessionmaker(bind=connection)()

    yield session

    session.close()
    if transaction.is_active:
        transaction.rollback()
    connection.close()


@pytest.fixture
def api_client(db_session: Session):
    """Create a test client for FastAPI with database dependency override."""
    from unittest.mock import patch

    from fastapi.testclient import TestClient

    from pairlog.api.app import app
    from pairlog.db.connection import get_db

    # Override the get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db

    # Disable lifespan startup checks for testing
    with patch("pairlog.api.app.run_all_startup_checks"):
        client = TestClient(app)
        yield client

    # Clean up
    app.dependency_overrides.clear()


@pytest.fixture
def first_lookup_misses() -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Wrap a repository lookup so its first call returns None.

    Simulates losing a creation race: the row exists, but another writer
    inserted it between our lookup and our insert.
    """

    def _wrap(lookup: Callable[..., Any]) -> Callable[..., Any]:
        calls = {"n": 0}

        def _lookup(*args: Any, **kwargs: Any) -> Any:
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return lookup(*args, **kwargs)

        return _lookup

    return _wrap


@pytest.fixture
def make_event() -> Callable[..., dict[str, Any]]:
    """Factory for raw client events with sensible defaults."""
    counter = {"n": 0}

    def _make(event_type: str = "USER_LOGIN", **fields: Any) -> dict[str, Any]:
        counter["n"] += 1
        event: dict[str, Any] = {
            "event_id": f"evt-{counter['n']}",
            "event_type": event_type,
            "timestamp": (T0 + timedelta(seconds=counter["n"])).isoformat(),
            "active_user_email": "alice@uni.edu",
            "data": {},
        }
        event.update(fields)
        return {k: v for k, v in event.items() if v is not None}

    return _make


@pytest.fixture
def sample_user(db_session: Session) -> User:
    """Create a sample user for testing."""
    user = User(
        email="alice@uni.edu",
        university_domain="uni.edu",
        created_at=T0 - timedelta(days=1),
        last_active_at=T0 - timedelta(days=1),
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def sample_navigator(db_session: Session) -> User:
    """Create a second user to pair with sample_user."""
    user = User(
        email="bob@uni.edu",
        university_domain="uni.edu",
        created_at=T0 - timedelta(days=1),
        last_active_at=T0 - timedelta(days=1),
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def sample_client_session(db_session: Session, sample_user: User) -> ClientSession:
    """Create a sample client session owned by sample_user."""
    client_session = ClientSession(
        session_id="sess-1",
        user_id=sample_user.id,
        start_time=T0,
        device_id="device-1",
    )
    db_session.add(client_session)
    db_session.commit()
    db_session.refresh(client_session)
    return client_session


@pytest.fixture
def open_pair_session(
    db_session: Session, sample_user: User, sample_navigator: User
) -> PairSession:
    """Create an open pair session with sample_user driving."""
    pair_session = PairSession(
        pair_session_id="p1",
        driver_id=sample_user.id,
        navigator_id=sample_navigator.id,
        current_driver_id=sample_user.id,
        start_time=T0,
        total_role_switches=0,
        completed_tasks_count=0,
        pending_tasks_count=0,
        expected_duration_minutes=15,
    )
    db_session.add(pair_session)
    db_session.commit()
    db_session.refresh(pair_session)
    return pair_session
