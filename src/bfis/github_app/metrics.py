"""Anonymous usage events for the GitHub App, sent to PostHog when configured."""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from bfis.config import MetricsConfig

logger = logging.getLogger(__name__)

DEFAULT_POSTHOG_HOST = "https://us.i.posthog.com"
APP_SCOPE = "app"

InstallationRef = str | int | None


def anonymize_installation(installation_id: InstallationRef) -> str:
    """PostHog distinct id for an installation; app-wide events share one id."""
    scope = APP_SCOPE if installation_id in (None, "") else str(installation_id)
    return hashlib.sha256(scope.encode("utf-8")).hexdigest()


class Metrics:
    """Usage events keyed by hashed installation id, never the raw id.

    Without an API key nothing is sent and posthog is not imported.
    """

    def __init__(self, api_key: str | None = None, host: str | None = None) -> None:
        self._client: Any = None
        if api_key:
            from posthog import Posthog

            self._client = Posthog(api_key, host=host or DEFAULT_POSTHOG_HOST)
            logger.info("Usage metrics enabled (%s)", host or DEFAULT_POSTHOG_HOST)

    @classmethod
    def from_config(cls, config: MetricsConfig) -> Metrics:
        return cls(api_key=config.posthog_api_key, host=config.posthog_host)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def track(
        self,
        event: str,
        installation_id: InstallationRef = None,
        properties: dict[str, Any] | None = None,
    ) -> None:
        if not self.enabled:
            return
        self._client.capture(
            distinct_id=anonymize_installation(installation_id),
            event=event,
            properties=dict(properties or {}),
        )

    def shutdown(self) -> None:
        """Flush queued events."""
        if self.enabled:
            self._client.shutdown()
