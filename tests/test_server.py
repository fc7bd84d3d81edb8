"""Tests for the FastAPI server."""

from __future__ import annotations

import hashlib
import hmac
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from bfis.config import GitHubAppConfig
from bfis.github_app.cache import TokenCache
from bfis.github_app.credentials import GitHubAppCredentials
from bfis.github_app.server import create_app
from conftest import WEBHOOK_SECRET, RecordingTransport

FRONTEND_URL = "http://localhost:3000"


def _sign(payload_bytes: bytes) -> str:
    """Compute the X-Hub-Signature-256 for a payload."""
    sig = hmac.new(WEBHOOK_SECRET.encode(), payload_bytes, hashlib.sha256).hexdigest()
    return f"sha256={sig}"


def _workflow_run_payload() -> dict:
    return {
        "action": "completed",
        "installation": {"id": 1},
        "workflow_run": {"id": 555, "conclusion": "failure"},
        "repository": {"full_name": "testowner/testrepo"},
    }


@pytest.fixture
def github_api() -> RecordingTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/app/installations":
            return httpx.Response(200, json=[{"id": 4242, "account": {"login": "octo"}}])
        return httpx.Response(404)

    return RecordingTransport(handler)


@pytest.fixture
def credentials(github_config: GitHubAppConfig, github_api: RecordingTransport) -> GitHubAppCredentials:
    return GitHubAppCredentials(github_config, TokenCache(), transport=github_api)


@pytest.fixture
def workflow_handler() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def metrics() -> MagicMock:
    return MagicMock()


@pytest.fixture
def app(credentials: GitHubAppCredentials, workflow_handler: AsyncMock, metrics: MagicMock):  # noqa: ANN201
    return create_app(
        credentials,
        frontend_url=FRONTEND_URL,
        event_handlers={"workflow_run": workflow_handler},
        metrics=metrics,
    )


@pytest.fixture
async def client(app) -> AsyncClient:  # noqa: ANN001
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _post_webhook(client: AsyncClient, payload_bytes: bytes, event: str, signature: str | None):  # noqa: ANN202
    headers = {"X-GitHub-Event": event, "X-GitHub-Delivery": "d-1", "Content-Type": "application/json"}
    if signature is not None:
        headers["X-Hub-Signature-256"] = signature
    return await client.post("/api/github/webhook", content=payload_bytes, headers=headers)


async def test_health(client: AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


async def test_connect(client: AsyncClient) -> None:
    resp = await client.get("/api/github/connect")
    assert resp.json() == {
        "installUrl": "https://github.com/apps/bfis-ci-tracker/installations/new"
    }


async def test_invalid_signature(
    client: AsyncClient, workflow_handler: AsyncMock, metrics: MagicMock
) -> None:
    payload = json.dumps(_workflow_run_payload()).encode()
    resp = await _post_webhook(client, payload, "workflow_run", "sha256=invalid")
    assert resp.status_code == 401
    assert resp.json() == {"error": "invalid signature"}
    workflow_handler.assert_not_awaited()
    metrics.track.assert_called_with("webhook_rejected", properties={"event_type": "workflow_run"})


async def test_missing_signature(client: AsyncClient, workflow_handler: AsyncMock) -> None:
    payload = json.dumps(_workflow_run_payload()).encode()
    resp = await _post_webhook(client, payload, "workflow_run", None)
    assert resp.status_code == 401
    workflow_handler.assert_not_awaited()


async def test_registered_event_dispatched(
    client: AsyncClient, workflow_handler: AsyncMock, credentials: GitHubAppCredentials
) -> None:
    payload_bytes = json.dumps(_workflow_run_payload()).encode()
    resp = await _post_webhook(client, payload_bytes, "workflow_run", _sign(payload_bytes))
    assert resp.status_code == 200
    assert resp.json()["status"] == "processing"
    # BackgroundTasks runs synchronously in test, so handler should have been called
    workflow_handler.assert_awaited_once_with(_workflow_run_payload(), credentials)


async def test_unregistered_event_ignored(client: AsyncClient, workflow_handler: AsyncMock) -> None:
    payload_bytes = json.dumps({"zen": "Design for failure.", "hook_id": 1}).encode()
    resp = await _post_webhook(client, payload_bytes, "ping", _sign(payload_bytes))
    assert resp.status_code == 200
    assert resp.json()["status"] == "ignored"
    workflow_handler.assert_not_awaited()


async def test_signed_but_invalid_json(client: AsyncClient) -> None:
    payload_bytes = b"not json"
    resp = await _post_webhook(client, payload_bytes, "workflow_run", _sign(payload_bytes))
    assert resp.status_code == 400


async def test_callback_records_installation(
    client: AsyncClient, credentials: GitHubAppCredentials, github_api: RecordingTransport
) -> None:
    """Only the id is stored; the token is exchanged lazily on first use."""
    resp = await client.get(
        "/api/github/callback", params={"installation_id": "98765", "setup_action": "install"}
    )
    assert resp.status_code == 302
    assert resp.headers["location"] == f"{FRONTEND_URL}?github_connected=true"
    assert credentials.latest_installation_id() == "98765"
    assert github_api.requests == []


async def test_callback_blank_installation(client: AsyncClient) -> None:
    resp = await client.get("/api/github/callback", params={"installation_id": " "})
    assert resp.status_code == 302
    assert "github_connected=false" in resp.headers["location"]


async def test_status_runs_cold_start_discovery(
    client: AsyncClient, credentials: GitHubAppCredentials
) -> None:
    resp = await client.get("/api/github/status")
    assert resp.json() == {
        "connected": True,
        "hasInstallation": True,
        "webhookEndpoint": "/api/github/webhook",
    }
    assert credentials.latest_installation_id() == "4242"


async def test_installations(client: AsyncClient) -> None:
    resp = await client.get("/api/github/installations")
    assert resp.json() == {
        "count": 1,
        "installations": [{"installationId": "4242", "accountLogin": "octo"}],
        "lastError": None,
    }


async def test_debug(client: AsyncClient) -> None:
    body = (await client.get("/api/github/debug")).json()
    assert body["appIdConfigured"] is True
    assert body["privateKeyConfigured"] is True
    assert body["hasInstallation"] is False


async def test_jwt_check_ok(client: AsyncClient) -> None:
    resp = await client.get("/api/github/jwt-check")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


async def test_jwt_check_reports_root_cause() -> None:
    credentials = GitHubAppCredentials(GitHubAppConfig(app_id="123"), TokenCache())
    app = create_app(credentials)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        resp = await c.get("/api/github/jwt-check")
    assert resp.status_code == 500
    body = resp.json()
    assert body["ok"] is False
    assert body["error"].startswith("KeyResolutionError")


async def test_reset(client: AsyncClient, credentials: GitHubAppCredentials) -> None:
    credentials.record_installation("1")
    resp = await client.post("/api/github/reset")
    assert resp.json() == {"message": "GitHub installation cache cleared"}
    assert not credentials.has_any_installation()
