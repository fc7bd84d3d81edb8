"""FastAPI server for the BFIS GitHub App integration."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, FastAPI, Request, Response
from fastapi.responses import RedirectResponse

from bfis.exceptions import BfisError
from bfis.github_app.credentials import GitHubAppCredentials
from bfis.github_app.metrics import Metrics
from bfis.github_app.webhooks import SIGNATURE_HEADER

logger = logging.getLogger(__name__)

API_PREFIX = "/api/github"
WEBHOOK_PATH = f"{API_PREFIX}/webhook"

EventHandler = Callable[[dict[str, Any], GitHubAppCredentials], Awaitable[None]]


def _json_response(body: dict[str, Any], status_code: int = 200) -> Response:
    return Response(content=json.dumps(body), status_code=status_code, media_type="application/json")


def _root_cause(exc: BaseException) -> BaseException:
    root = exc
    while root.__cause__ is not None and root.__cause__ is not root:
        root = root.__cause__
    return root


def create_app(
    credentials: GitHubAppCredentials,
    frontend_url: str = "http://localhost:3000",
    event_handlers: Mapping[str, EventHandler] | None = None,
    metrics: Metrics | None = None,
) -> FastAPI:
    """Create the FastAPI app exposing the install flow, webhook and diagnostics."""
    handlers = dict(event_handlers or {})

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if metrics:
            metrics.track("server_started")
        yield
        if metrics:
            metrics.shutdown()

    app = FastAPI(title="BFIS GitHub App", lifespan=lifespan)
    router = APIRouter(prefix=API_PREFIX)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/connect")
    async def connect() -> dict[str, str]:
        logger.info("Generated GitHub App installation URL")
        return {"installUrl": credentials.config.install_url}

    @router.post("/webhook")
    async def webhook(request: Request, background_tasks: BackgroundTasks) -> Response:
        payload_bytes = await request.body()
        signature = request.headers.get(SIGNATURE_HEADER)
        event = request.headers.get("X-GitHub-Event", "")
        delivery = request.headers.get("X-GitHub-Delivery", "")
        logger.info("Received GitHub webhook: event=%s, delivery=%s", event, delivery)

        if not credentials.verify_webhook(payload_bytes, signature):
            logger.warning("Webhook signature verification failed for delivery: %s", delivery)
            if metrics:
                metrics.track("webhook_rejected", properties={"event_type": event})
            return _json_response({"error": "invalid signature"}, status_code=401)

        try:
            payload = json.loads(payload_bytes)
        except ValueError:
            return _json_response({"error": "invalid payload"}, status_code=400)
        if not isinstance(payload, dict):
            return _json_response({"error": "invalid payload"}, status_code=400)

        action = payload.get("action", "")
        installation = payload.get("installation")
        installation_id = installation.get("id") if isinstance(installation, dict) else None

        handler = handlers.get(event)
        status = "processing" if handler else "ignored"
        if metrics:
            metrics.track(
                "webhook_received",
                installation_id=installation_id,
                properties={"event_type": event, "action": action, "status": status},
            )
        if handler is None:
            logger.debug("Ignoring %s event with no registered handler", event)
            return _json_response({"status": "ignored"})

        background_tasks.add_task(handler, payload, credentials)
        return _json_response({"status": "processing"})

    @router.get("/status")
    async def status() -> dict[str, Any]:
        await credentials.ensure_installation_present()
        has_installation = credentials.has_any_installation()
        return {
            "connected": has_installation,
            "hasInstallation": has_installation,
            "webhookEndpoint": WEBHOOK_PATH,
        }

    @router.get("/callback")
    async def callback(installation_id: str, setup_action: str | None = None) -> Response:
        logger.info(
            "GitHub App installation callback: installation_id=%s, action=%s",
            installation_id,
            setup_action,
        )
        if not installation_id.strip():
            query = urlencode({"github_connected": "false", "error": "missing installation_id"})
            return RedirectResponse(f"{frontend_url}?{query}", status_code=302)
        credentials.record_installation(installation_id.strip())
        return RedirectResponse(f"{frontend_url}?github_connected=true", status_code=302)

    @router.get("/installations")
    async def installations() -> dict[str, Any]:
        result = await credentials.discover_installations()
        return {
            "count": len(result.installations),
            "installations": [r.to_dict() for r in result.installations],
            "lastError": result.error,
        }

    @router.get("/debug")
    async def debug() -> dict[str, Any]:
        return credentials.diagnostics()

    @router.get("/jwt-check")
    async def jwt_check() -> Response:
        try:
            credentials.mint_app_identity()
        except BfisError as e:
            root = _root_cause(e)
            return _json_response(
                {"ok": False, "error": f"{type(root).__name__}: {root}"}, status_code=500
            )
        return _json_response({"ok": True})

    @router.post("/reset")
    async def reset() -> dict[str, str]:
        credentials.clear_cache()
        return {"message": "GitHub installation cache cleared"}

    app.include_router(router)
    return app
