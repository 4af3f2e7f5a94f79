"""
Integration test fixtures for clipbot.

These fixtures provide a full FastAPI test client with a database, an
in-process Redis queue and a mocked Telegram client.
"""

from typing import Generator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from clipbot.api.dependencies import get_job_queue, get_notifier
from clipbot.api.main import app
from clipbot.models import get_db


@pytest.fixture(scope="function")
def override_db(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    return override_get_db


@pytest.fixture(scope="function")
def client(override_db, queue, mock_notifier) -> Generator[TestClient, None, None]:
    """Create a test client with overridden dependencies."""
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_job_queue] = lambda: queue
    app.dependency_overrides[get_notifier] = lambda: mock_notifier
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def telegram_update(text: str | None, update_id: int = 1, user_id: int = 4242) -> dict:
    message = {
        "message_id": update_id + 100,
        "date": 1700000000,
        "from": {"id": user_id, "is_bot": False, "first_name": "Ana", "username": "ana"},
        "chat": {"id": user_id, "type": "private"},
    }
    if text is not None:
        message["text"] = text
    return {"update_id": update_id, "message": message}


@pytest.fixture
def update_factory():
    return telegram_update


@pytest.fixture
def broken_queue() -> MagicMock:
    queue = MagicMock()
    queue.metrics.side_effect = ConnectionError("redis down")
    queue.get.side_effect = ConnectionError("redis down")
    return queue
