"""Shared data models for the BFIS GitHub App core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

# Expiry given to installations recorded before any token has been exchanged.
PLACEHOLDER_EXPIRY = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class AppIdentityAssertion:
    """A signed JWT proving the app's own identity to GitHub."""

    token: str
    issuer: str
    issued_at: int
    expires_at: int

    @property
    def lifetime(self) -> int:
        return self.expires_at - self.issued_at


@dataclass(frozen=True)
class InstallationCredential:
    """A cached installation access token.

    ``token`` is ``None`` while the installation is known but has not yet been
    exchanged for a token.
    """

    installation_id: str
    token: str | None
    expires_at: datetime = PLACEHOLDER_EXPIRY

    def is_live(self, now: datetime) -> bool:
        return self.token is not None and self.expires_at > now


@dataclass(frozen=True)
class InstallationRecord:
    """An installation of the app, as reported by GitHub."""

    installation_id: str
    account_login: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"installationId": self.installation_id, "accountLogin": self.account_login}


@dataclass
class DiscoveryResult:
    """Outcome of listing installations: the records found, or why there are none."""

    installations: list[InstallationRecord] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
