"""In-memory installation token cache."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timezone

from bfis.models import PLACEHOLDER_EXPIRY, InstallationCredential


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCache:
    """Thread-safe map of installation id to its latest access token.

    Also remembers the most recently stored installation id, which callers use
    as the default target when they do not name one. One instance is created
    per process and handed to everything that needs it.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, InstallationCredential] = {}
        self._latest_id: str | None = None

    def put(
        self,
        installation_id: str,
        token: str | None,
        expires_at: datetime | None = None,
    ) -> None:
        """Store (or replace) the credential for an installation and mark it latest.

        A ``None`` token records the installation without a usable token; its
        first ``get`` is always a miss.
        """
        credential = InstallationCredential(
            installation_id=installation_id,
            token=token,
            expires_at=expires_at if expires_at is not None else PLACEHOLDER_EXPIRY,
        )
        with self._lock:
            self._entries[installation_id] = credential
            self._latest_id = installation_id

    def record_installation(self, installation_id: str) -> None:
        self.put(installation_id, None, PLACEHOLDER_EXPIRY)

    def get(self, installation_id: str) -> str | None:
        """Return the token if present and not yet expired."""
        with self._lock:
            credential = self._entries.get(installation_id)
        if credential is None or not credential.is_live(self._clock()):
            return None
        return credential.token

    def entry(self, installation_id: str) -> InstallationCredential | None:
        with self._lock:
            return self._entries.get(installation_id)

    def latest_installation_id(self) -> str | None:
        with self._lock:
            if self._latest_id is not None:
                return self._latest_id
            return next(iter(self._entries), None)

    def has_any(self) -> bool:
        with self._lock:
            return bool(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._latest_id = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
