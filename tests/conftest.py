"""
Shared fixtures for clipbot tests.
"""

import os
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock

# ============================================================================
# Set test environment BEFORE any clipbot imports
# ============================================================================
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6379"
os.environ["TELEGRAM_BOT_TOKEN"] = "123456:test-token"
os.environ["TELEGRAM_WEBHOOK_SECRET"] = ""
os.environ["TEMP_DIR"] = tempfile.gettempdir()

import clipbot.core.config
clipbot.core.config.get_settings.cache_clear()

import fakeredis
import pytest
from faker import Faker
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from clipbot.core.queue import JobQueue, Retention
from clipbot.models.base import Base
from clipbot.models.job import Job
from clipbot.models.user import User
from clipbot.services import store
from clipbot.services.command_parser import JobRequest

fake = Faker()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(scope="function")
def db_engine():
    """Create in-memory SQLite engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a database session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Queue Fixtures
# ============================================================================


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def redis_client():
    """Isolated in-process Redis."""
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def queue(redis_client, clock) -> JobQueue:
    """Queue with a 3 attempt cap, 2s backoff base and a 30s lease."""
    return JobQueue(
        redis_client,
        name="test",
        max_attempts=3,
        backoff_base=2,
        lease_timeout=30,
        retention=Retention(),
        poll_interval=0.01,
        clock=clock,
    )


# ============================================================================
# User / Job Fixtures
# ============================================================================


@pytest.fixture
def test_user(db_session: Session) -> User:
    """Create and return a test user."""
    return store.upsert_user(
        db_session,
        telegram_id=fake.random_int(min=10_000, max=99_999_999),
        first_name=fake.first_name(),
        username=fake.user_name(),
        language_code="en",
    )


@pytest.fixture
def job_request() -> JobRequest:
    return JobRequest(url="https://www.youtube.com/watch?v=dQw4w9WgXcQ")


@pytest.fixture
def make_job(db_session: Session, test_user: User):
    """Factory creating pending jobs for the test user."""

    def _make(request: JobRequest | None = None, **overrides) -> Job:
        job = store.create_job(
            db_session,
            test_user,
            chat_id=overrides.pop("chat_id", 424242),
            request=request or JobRequest(url="https://www.youtube.com/watch?v=dQw4w9WgXcQ"),
            message_id=overrides.pop("message_id", 7),
        )
        if overrides:
            for key, value in overrides.items():
                setattr(job, key, value)
            db_session.commit()
            db_session.refresh(job)
        return job

    return _make


@pytest.fixture
def test_job(make_job) -> Job:
    """Create and return a test job in pending status."""
    return make_job()


# ============================================================================
# File System Fixtures
# ============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_notifier() -> MagicMock:
    """Stand-in for TelegramClient."""
    notifier = MagicMock()
    notifier.send_message.return_value = {"message_id": 99}
    notifier.edit_message_text.return_value = {"message_id": 99}
    notifier.send_video.return_value = {"message_id": 100}
    notifier.send_audio.return_value = {"message_id": 101}
    return notifier
