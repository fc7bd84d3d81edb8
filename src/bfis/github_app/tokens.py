"""Installation access token exchange with cache-aside lookup."""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any

import httpx

from bfis.exceptions import TokenExchangeError
from bfis.github_app.auth import AppIdentityMinter
from bfis.github_app.cache import TokenCache
from bfis.github_app.metrics import Metrics

logger = logging.getLogger(__name__)

GITHUB_API_VERSION = "2022-11-28"
DEFAULT_API_BASE_URL = "https://api.github.com"


def github_headers(bearer: str) -> dict[str, str]:
    """Standard headers for a GitHub REST call authenticated with ``bearer``."""
    return {
        "Authorization": f"Bearer {bearer}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }


def parse_expiry(raw: str) -> datetime:
    """Parse GitHub's ISO-8601 ``expires_at`` (e.g. ``2025-12-25T15:00:00Z``) as aware UTC."""
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class InstallationTokenBroker:
    """Returns a usable installation token, exchanging a fresh app JWT only on cache miss.

    With ``coalesce=True`` concurrent misses for the same installation wait on
    a per-installation lock and reuse the first caller's result. With
    ``coalesce=False`` each miss performs its own exchange and the last write
    to the cache wins.
    """

    def __init__(
        self,
        minter: AppIdentityMinter,
        cache: TokenCache,
        api_base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 10.0,
        coalesce: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
        metrics: Metrics | None = None,
    ) -> None:
        self._minter = minter
        self._cache = cache
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout = timeout
        self._coalesce = coalesce
        self._transport = transport
        self._metrics = metrics
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_guard = threading.Lock()

    async def get_token(self, installation_id: str) -> str:
        """Get an installation access token, using the cache when possible."""
        installation_id = str(installation_id)
        cached = self._cache.get(installation_id)
        if cached is not None:
            logger.debug("Using cached installation token for %s", installation_id)
            return cached

        if not self._coalesce:
            return await self._exchange(installation_id)

        async with self._lock_for(installation_id):
            # Another waiter may have refreshed it while we queued
            cached = self._cache.get(installation_id)
            if cached is not None:
                return cached
            return await self._exchange(installation_id)

    def _lock_for(self, installation_id: str) -> asyncio.Lock:
        with self._locks_guard:
            lock = self._locks.get(installation_id)
            if lock is None:
                lock = self._locks[installation_id] = asyncio.Lock()
            return lock

    async def _exchange(self, installation_id: str) -> str:
        logger.info("Requesting new installation token for installation %s", installation_id)
        assertion = self._minter.mint()
        url = f"{self._api_base_url}/app/installations/{installation_id}/access_tokens"

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(url, headers=github_headers(assertion.token), json={})
        except httpx.HTTPError as e:
            self._track_failure(installation_id, None)
            raise TokenExchangeError(
                f"Failed to get installation token: {type(e).__name__}: {e}"
            ) from e

        if resp.status_code != 201:
            self._track_failure(installation_id, resp.status_code)
            raise TokenExchangeError(
                f"Failed to get installation token (HTTP {resp.status_code}): {resp.text}",
                status=resp.status_code,
            )

        token, expires_at = self._parse_token_response(resp)
        self._cache.put(installation_id, token, expires_at)
        logger.info(
            "Obtained installation token for %s (expires %s)",
            installation_id,
            expires_at.isoformat(),
        )
        if self._metrics:
            self._metrics.track("token_exchanged", installation_id=installation_id)
        return token

    @staticmethod
    def _parse_token_response(resp: httpx.Response) -> tuple[str, datetime]:
        try:
            data: dict[str, Any] = resp.json()
            token = data["token"]
            expires_at = parse_expiry(data["expires_at"])
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise TokenExchangeError(
                f"Malformed installation token response: {type(e).__name__}: {e}",
                status=resp.status_code,
            ) from e
        if not isinstance(token, str) or not token:
            raise TokenExchangeError(
                "Installation token response is missing the token", status=resp.status_code
            )
        return token, expires_at

    def _track_failure(self, installation_id: str, status: int | None) -> None:
        if self._metrics:
            self._metrics.track(
                "token_exchange_failed",
                installation_id=installation_id,
                properties={"status": status},
            )
