"""GitHub App JWT generation."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import jwt

from bfis.config import GitHubAppConfig
from bfis.exceptions import KeyResolutionError, SigningError
from bfis.github_app.keys import KeyMaterialResolver
from bfis.models import AppIdentityAssertion

logger = logging.getLogger(__name__)

# GitHub rejects app JWTs valid for longer than 10 minutes.
APP_JWT_TTL = 10 * 60
APP_JWT_ALGORITHM = "RS256"


class AppIdentityMinter:
    """Signs short-lived RS256 JWTs asserting the app's identity.

    Nothing is memoized: every call re-reads and re-parses the key and signs a
    fresh assertion. Signing is cheap next to the token exchange it precedes.
    """

    def __init__(
        self,
        config: GitHubAppConfig,
        resolver: KeyMaterialResolver | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._app_id = config.app_id.strip()
        self._resolver = resolver or KeyMaterialResolver(config)
        self._clock = clock

    def mint(self) -> AppIdentityAssertion:
        """Produce a signed assertion valid for APP_JWT_TTL seconds from now."""
        if not self._app_id:
            raise SigningError("GitHub App ID is not configured")

        try:
            signing_key = self._resolver.resolve()
        except KeyResolutionError as e:
            logger.error("Failed to resolve GitHub App private key (%s)", e.reason.value)
            raise SigningError(f"Failed to generate GitHub App JWT: {e}", cause=e) from e

        now = int(self._clock())
        payload = {
            "iat": now,
            "exp": now + APP_JWT_TTL,
            "iss": self._app_id,
        }
        try:
            token = jwt.encode(payload, signing_key, algorithm=APP_JWT_ALGORITHM)
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            logger.error("Failed to sign GitHub App JWT: %s", type(e).__name__)
            raise SigningError(f"Failed to sign GitHub App JWT: {e}", cause=e) from e

        logger.debug("Generated GitHub App JWT (expires in %d seconds)", APP_JWT_TTL)
        return AppIdentityAssertion(
            token=token, issuer=self._app_id, issued_at=now, expires_at=now + APP_JWT_TTL
        )
