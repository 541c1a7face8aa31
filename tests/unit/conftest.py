"""Shared fixtures: SQLite stores under tmp_path and a mocked aiohttp session."""
import json
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.statly_core.attribution.links import LinkStore
from src.statly_core.metrics.schema import connect, init_database
from src.statly_core.metrics.store import MetricStore


def make_response(
    status: int = 200,
    json_data: Any = None,
    text: Optional[str] = None,
    body: bytes = b"",
) -> AsyncMock:
    """Mock aiohttp response usable as ``async with session.get(...)``."""
    response = AsyncMock()
    response.status = status
    response.json.return_value = json_data
    response.text.return_value = text if text is not None else json.dumps(json_data)
    response.read.return_value = body
    response.__aenter__.return_value = response
    response.__aexit__.return_value = False
    return response


def make_session(handler: Callable[[str, Optional[dict]], AsyncMock]) -> MagicMock:
    """Mock ClientSession whose get() is answered by ``handler(url, params)``.

    Every call is recorded on ``session.get.call_args_list``.
    """
    session = MagicMock()

    def get(url, headers=None, params=None, timeout=None):
        return handler(url, params)

    session.get.side_effect = get
    return session


def routes_session(routes: dict[str, AsyncMock]) -> MagicMock:
    """Session answering exact URLs; unknown URLs get a 404."""

    def handler(url, params):
        return routes.get(url) or make_response(404, {"error": "not found"})

    return make_session(handler)


@pytest.fixture
def db_conn(tmp_path):
    db_path = tmp_path / "statly.db"
    init_database(db_path)
    conn = connect(db_path)
    yield conn
    conn.close()


@pytest.fixture
def store(db_conn):
    return MetricStore(db_conn)


@pytest.fixture
def links(db_conn):
    return LinkStore(db_conn)


@pytest.fixture
def connected_app(store):
    """A plaintext RevenueCat app owned by user-1."""
    return store.create_app(
        user_id="user-1",
        provider="revenuecat",
        credentials={"api_key": "sk_test_revenuecat_key", "project_id": "proj1"},
        credentials_masked={"api_key": "sk_t••••••••_key", "project_id": "proj1"},
        external_app_id="proj1",
    )


@pytest.fixture
def response():
    """Factory for mock aiohttp responses."""
    return make_response


@pytest.fixture
def session_for():
    """Factory for mock sessions driven by a ``handler(url, params)``."""
    return make_session


@pytest.fixture
def session_with_routes():
    """Factory for mock sessions answering exact URLs (404 otherwise)."""
    return routes_session
