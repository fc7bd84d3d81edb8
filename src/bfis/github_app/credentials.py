"""Single entry point the rest of BFIS uses for GitHub App credentials."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from bfis.config import GitHubAppConfig
from bfis.exceptions import TokenExchangeError
from bfis.github_app.auth import AppIdentityMinter
from bfis.github_app.cache import TokenCache
from bfis.github_app.discovery import InstallationDiscovery
from bfis.github_app.keys import KeyMaterialResolver
from bfis.github_app.metrics import Metrics
from bfis.github_app.tokens import InstallationTokenBroker
from bfis.github_app.webhooks import WebhookVerifier
from bfis.models import AppIdentityAssertion, DiscoveryResult, InstallationRecord

logger = logging.getLogger(__name__)


class GitHubAppCredentials:
    """Wires key resolution, JWT minting, token caching, discovery and webhook checks."""

    def __init__(
        self,
        config: GitHubAppConfig,
        cache: TokenCache,
        transport: httpx.AsyncBaseTransport | None = None,
        metrics: Metrics | None = None,
    ) -> None:
        self._config = config
        self._cache = cache
        self._resolver = KeyMaterialResolver(config)
        self.minter = AppIdentityMinter(config, self._resolver)
        self.broker = InstallationTokenBroker(
            self.minter,
            cache,
            api_base_url=config.api_base_url,
            timeout=config.request_timeout,
            coalesce=config.coalesce_token_requests,
            transport=transport,
            metrics=metrics,
        )
        self.discovery = InstallationDiscovery(
            self.minter,
            api_base_url=config.api_base_url,
            timeout=config.request_timeout,
            transport=transport,
        )
        self.verifier = WebhookVerifier(config.webhook_secret)

    @property
    def config(self) -> GitHubAppConfig:
        return self._config

    def mint_app_identity(self) -> AppIdentityAssertion:
        return self.minter.mint()

    async def get_installation_token(self, installation_id: str | None = None) -> str:
        """Token for ``installation_id``, or for the latest known installation if omitted."""
        if installation_id is None:
            await self.ensure_installation_present()
            installation_id = self._cache.latest_installation_id()
            if installation_id is None:
                raise TokenExchangeError("No GitHub App installation found")
        return await self.broker.get_token(str(installation_id))

    async def list_installations(self) -> list[InstallationRecord]:
        return await self.discovery.list_installations()

    async def discover_installations(self) -> DiscoveryResult:
        return await self.discovery.discover()

    def verify_webhook(self, payload_bytes: bytes, signature_header: str | None) -> bool:
        return self.verifier.verify(payload_bytes, signature_header)

    def record_installation(self, installation_id: str) -> None:
        """Remember an installation id; its token is fetched lazily on first use."""
        self._cache.record_installation(str(installation_id))
        logger.info("Recorded GitHub App installation %s", installation_id)

    def has_any_installation(self) -> bool:
        return self._cache.has_any()

    def latest_installation_id(self) -> str | None:
        return self._cache.latest_installation_id()

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("GitHub installation cache cleared")

    async def ensure_installation_present(self) -> bool:
        """Cold-start recovery: seed the cache from discovery when it is empty."""
        if self._cache.has_any():
            return True
        result = await self.discovery.discover()
        if result.installations:
            self.record_installation(result.installations[0].installation_id)
            return True
        if result.error:
            logger.warning("No installations discovered: %s", result.error)
        return False

    def diagnostics(self) -> dict[str, Any]:
        """Configuration presence flags and cache state. Never includes secret values."""
        info: dict[str, Any] = {
            "hasInstallation": self._cache.has_any(),
            "latestInstallationId": self._cache.latest_installation_id(),
            "appIdConfigured": bool(self._config.app_id.strip()),
            "webhookSecretConfigured": bool(self._config.webhook_secret.strip()),
            "installationDiscoveryLastError": self.discovery.last_error,
        }
        info.update(self._resolver.describe_source())
        return info
