"""Discovery of existing GitHub App installations.

Installation ids are only learned transiently (install callback, webhook
payloads) and live in memory, so after a restart the cache is empty. Listing
the app's installations with an app JWT recovers them.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from bfis.exceptions import BfisError
from bfis.github_app.auth import AppIdentityMinter
from bfis.github_app.tokens import DEFAULT_API_BASE_URL, github_headers
from bfis.models import DiscoveryResult, InstallationRecord

logger = logging.getLogger(__name__)


def _parse_installations(body: Any) -> list[InstallationRecord]:
    if not isinstance(body, list):
        raise ValueError(f"expected a list of installations, got {type(body).__name__}")
    records: list[InstallationRecord] = []
    for item in body:
        if not isinstance(item, dict) or item.get("id") is None:
            continue
        account = item.get("account")
        login = account.get("login") if isinstance(account, dict) else None
        records.append(InstallationRecord(installation_id=str(item["id"]), account_login=login))
    return records


class InstallationDiscovery:
    """Best-effort listing of the app's installations. Never raises."""

    def __init__(
        self,
        minter: AppIdentityMinter,
        api_base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._minter = minter
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._last_error: str | None = None

    @property
    def last_error(self) -> str | None:
        """Why the most recent attempt failed, or None if it succeeded."""
        return self._last_error

    async def list_installations(self) -> list[InstallationRecord]:
        return (await self.discover()).installations

    async def discover(self) -> DiscoveryResult:
        self._last_error = None
        try:
            result = await self._discover()
        except Exception as e:  # noqa: BLE001
            result = DiscoveryResult(error=f"{type(e).__name__}: {e}")
        self._last_error = result.error
        if result.error:
            logger.warning("Failed to list GitHub App installations: %s", result.error)
        else:
            logger.info("Discovered %d GitHub App installation(s)", len(result.installations))
        return result

    async def _discover(self) -> DiscoveryResult:
        try:
            assertion = self._minter.mint()
        except BfisError as e:
            return DiscoveryResult(error=f"{type(e).__name__}: {e}")

        url = f"{self._api_base_url}/app/installations"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.get(
                    url, headers=github_headers(assertion.token), params={"per_page": 100}
                )
        except httpx.HTTPError as e:
            return DiscoveryResult(error=f"{type(e).__name__}: {e}")

        if resp.status_code != 200:
            detail = f": {resp.text}" if resp.text.strip() else ""
            return DiscoveryResult(
                error=f"GitHub API {resp.status_code} {resp.reason_phrase}{detail}"
            )

        try:
            return DiscoveryResult(installations=_parse_installations(resp.json()))
        except ValueError as e:
            return DiscoveryResult(error=f"{type(e).__name__}: {e}")
