"""Custom exception hierarchy for BFIS."""

from __future__ import annotations

import enum


class BfisError(Exception):
    """Base exception for all BFIS errors."""


class ConfigError(BfisError):
    """Error loading or validating configuration."""


class KeyResolutionReason(str, enum.Enum):
    MISSING = "missing"
    NOT_A_FILE = "not-a-file"
    UNREADABLE = "unreadable"
    UNCONFIGURED = "unconfigured"
    UNPARSEABLE = "unparseable"


class KeyResolutionError(BfisError):
    """The GitHub App private key could not be located, read or parsed."""

    def __init__(
        self,
        reason: KeyResolutionReason,
        message: str,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.cause = cause


class SigningError(BfisError):
    """Error producing the signed app identity assertion."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class TokenExchangeError(BfisError):
    """Error exchanging an app identity assertion for an installation token."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
