"""Unit tests for API routes."""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from src.statly_core.attribution.links import LinkStore
from src.statly_core.credentials.validator import CredentialValidator, ValidationResult
from src.statly_core.main import create_app
from src.statly_core.metrics.schema import connect
from src.statly_core.metrics.store import MetricStore


HEADERS = {"X-STATLY-API-KEY": "test-api-key"}


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "statly.db"


@pytest.fixture
def client(monkeypatch, db_path):
    """Create test client with mocked environment."""
    monkeypatch.setenv("STATLY_API_KEY", "test-api-key")
    monkeypatch.setenv("STATLY_DB_PATH", str(db_path))
    monkeypatch.setenv("CREDENTIALS_ENCRYPTION_KEY", "test-encryption-passphrase")
    monkeypatch.setenv("STATLY_SYNC_ON_STORE", "false")
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("STATLY_RAW_DIR", raising=False)
    monkeypatch.delenv("STATLY_TIMEZONE", raising=False)
    app = create_app()
    with TestClient(app) as client:
        yield client


@pytest.fixture
def valid_credentials():
    """Every credential bundle passes validation without network access."""
    with patch.object(
        CredentialValidator,
        "validate",
        AsyncMock(return_value=ValidationResult(True, canonical_project_id="proj1")),
    ) as validate:
        yield validate


def test_health(client):
    """Health check needs no API key."""
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_sync_all_missing_api_key(client):
    """Test endpoint rejects request without API key (401)."""
    response = client.post("/sync-all", json={})

    assert response.status_code == 401
    assert "Invalid API key" in response.json()["detail"]


def test_store_credentials_invalid_api_key(client):
    """Test endpoint rejects request with invalid API key."""
    response = client.post(
        "/store-credentials",
        json={"action": "store", "provider": "revenuecat", "credentials": {"api_key": "x"}},
        headers={"X-STATLY-API-KEY": "wrong-key"},
    )

    assert response.status_code == 401


def test_sync_all_with_no_apps(client):
    """No connected apps gives an empty, successful result."""
    response = client.post("/sync-all", json={}, headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"success": True, "results": []}


def test_store_credentials_invalid_action(client):
    """Test endpoint rejects unknown actions."""
    response = client.post(
        "/store-credentials",
        json={"action": "delete", "provider": "revenuecat", "credentials": {"api_key": "x"}},
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid action"


def test_store_credentials_rejected(client):
    """Validation failures surface as 400 with the reason."""
    with patch.object(
        CredentialValidator,
        "validate",
        AsyncMock(return_value=ValidationResult(False, "Invalid API key")),
    ):
        response = client.post(
            "/store-credentials",
            json={
                "action": "store",
                "provider": "revenuecat",
                "user_id": "user-1",
                "credentials": {"api_key": "rc_bad_key"},
            },
            headers=HEADERS,
        )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid API key"


def test_store_credentials_returns_masked_app(client, valid_credentials, db_path):
    """A stored app is returned masked and persisted encrypted."""
    response = client.post(
        "/store-credentials",
        json={
            "action": "store",
            "provider": "revenuecat",
            "user_id": "user-1",
            "credentials": {"api_key": "rc_abcdefghijkl"},
        },
        headers=HEADERS,
    )

    assert response.status_code == 200
    app = response.json()["app"]
    assert app["provider"] == "revenuecat"
    assert app["credentials_masked"] == {"api_key": "rc_a••••••••ijkl", "project_id": "proj1"}
    assert "credentials" not in app

    conn = connect(db_path)
    try:
        stored = MetricStore(conn).get_app(app["id"])
    finally:
        conn.close()
    assert stored.is_encrypted is True
    assert stored.credentials["api_key"] != "rc_abcdefghijkl"


def test_update_unknown_app(client, valid_credentials):
    """Updating a missing app is a 404."""
    response = client.post(
        "/store-credentials",
        json={
            "action": "update",
            "provider": "revenuecat",
            "app_id": "missing",
            "credentials": {"api_key": "rc_key"},
        },
        headers=HEADERS,
    )

    assert response.status_code == 404


def test_sync_provider_unknown_app(client):
    """Explicit-credential sync of an unknown app is a 404."""
    response = client.post(
        "/sync-revenuecat",
        json={"app_id": "missing", "credentials": {"api_key": "rc_key"}},
        headers=HEADERS,
    )

    assert response.status_code == 404


def test_sync_provider_unsupported(client):
    """Unknown provider names are a 400."""
    response = client.post(
        "/sync-nothing",
        json={"app_id": "missing", "credentials": {"api_key": "rc_key"}},
        headers=HEADERS,
    )

    assert response.status_code == 400


def test_revenuecat_webhook_without_apps(client):
    """Webhook is acknowledged even when nothing is connected."""
    response = client.post("/revenuecat-webhook", json={"event": {"type": "RENEWAL"}})

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "No connected apps"}


def test_revenuecat_webhook_bad_body_still_200(client):
    """Malformed bodies are reported in the envelope, not as errors."""
    response = client.post("/revenuecat-webhook", json=["not", "an", "object"])

    assert response.status_code == 200
    assert response.json()["success"] is False


def test_attribution_webhook_ignored_type(client):
    """Irrelevant event types are acknowledged and ignored."""
    response = client.post(
        "/attribution-webhook", json={"event": {"type": "RENEWAL", "app_user_id": "rc-1"}}
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ignored", "type": "RENEWAL"}


def test_attribution_webhook_bad_body(client):
    """Unexpected failures on the attribution webhook are a 500."""
    response = client.post("/attribution-webhook", json=[1, 2])

    assert response.status_code == 500
    assert "error" in response.json()


def test_track_click_unknown_slug(client):
    """Unknown slugs redirect to a store search."""
    response = client.get("/track-click/myapp", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "https://apps.apple.com/search?term=myapp"
    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"


def test_track_click_known_slug(client, db_path):
    """Known slugs log a click and redirect to the store URL."""
    conn = connect(db_path)
    try:
        LinkStore(conn).get_or_create_tracking_link(
            "user-1", "My App", "https://apps.apple.com/app/id123"
        )
    finally:
        conn.close()

    response = client.get(
        "/track-click/myapp",
        headers={"Referer": "https://www.reddit.com/r/apps", "User-Agent": "Android"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == "https://apps.apple.com/app/id123"
    conn = connect(db_path)
    try:
        row = conn.execute("SELECT source, device_type FROM link_clicks").fetchone()
    finally:
        conn.close()
    assert row["device_type"] == "Android"
    assert row["source"] == "Reddit"


def test_track_click_missing_slug(client):
    """A bare /track-click/ is a 400."""
    response = client.get("/track-click/", follow_redirects=False)

    assert response.status_code == 400
    assert response.text == "Missing app slug"


def test_metrics_summary(client, db_path):
    """Dashboard totals cover the user's apps for the requested window."""
    conn = connect(db_path)
    try:
        store = MetricStore(conn)
        app = store.create_app("user-1", "appsflyer", {"api_token": "t"}, {})
        store.create_app("user-2", "appsflyer", {"api_token": "t"}, {})
        today = datetime.now(timezone.utc).date()
        store.upsert_metric(app.id, "appsflyer", "downloads", 12, today)
        store.upsert_metric(app.id, "appsflyer", "revenue", 30.5, today)
        store.upsert_metric(app.id, "appsflyer", "active_users", 40, today - timedelta(days=1))
        store.upsert_metric(app.id, "appsflyer", "active_users", 25, today)
        store.upsert_metric(app.id, "revenuecat", "active_subscribers", 9, today)
    finally:
        conn.close()

    response = client.get("/metrics-summary", params={"user_id": "user-1"}, headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["apps"] == 1
    assert body["totals"]["downloads"] == 12
    assert body["totals"]["revenue"] == 30.5
    assert body["totals"]["active_users"] == 25


def test_attribution_stats_without_link(client):
    """Users without a tracking link get empty stats."""
    response = client.get("/attribution-stats", params={"user_id": "nobody"}, headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {
        "days": 30,
        "sources": [],
        "totals": {"total_clicks": 0, "total_installs": 0, "total_revenue": 0},
    }


def test_read_routes_require_api_key(client):
    """Dashboard reads are protected like the other interactive routes."""
    response = client.get("/attribution-stats", params={"user_id": "user-1"})

    assert response.status_code == 401


def test_sync_app_unknown(client):
    """Syncing a stored app that does not exist is a 404."""
    response = client.post("/sync-app", json={"app_id": "missing"}, headers=HEADERS)

    assert response.status_code == 404
    assert response.json()["detail"] == "App not found"


def test_sync_app_unsupported_provider(client, db_path):
    """A stored app without an adapter reports a failed result."""
    conn = connect(db_path)
    try:
        app = MetricStore(conn).create_app("user-1", "stripe", {"secret_key": "sk"}, {})
    finally:
        conn.close()

    response = client.post("/sync-app", json={"app_id": app.id}, headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["results"][0]["error"] == "Unsupported provider: stripe"
