"""Shared test fixtures."""

from __future__ import annotations

import base64
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)

from bfis.config import GitHubAppConfig

APP_ID = "123"
WEBHOOK_SECRET = "test-secret-123"
FIXED_NOW = 1_700_000_000
FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def pkcs8_pem(rsa_key: rsa.RSAPrivateKey) -> str:
    """RSA key as a ``BEGIN PRIVATE KEY`` PEM."""
    return rsa_key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()).decode()


@pytest.fixture(scope="session")
def pkcs1_pem(rsa_key: rsa.RSAPrivateKey) -> str:
    """RSA key as a ``BEGIN RSA PRIVATE KEY`` PEM (what GitHub hands out)."""
    return rsa_key.private_bytes(
        Encoding.PEM, PrivateFormat.TraditionalOpenSSL, NoEncryption()
    ).decode()


@pytest.fixture(scope="session")
def base64_pem(pkcs1_pem: str) -> str:
    return base64.b64encode(pkcs1_pem.encode()).decode()


@pytest.fixture(scope="session")
def base64_der(rsa_key: rsa.RSAPrivateKey) -> str:
    der = rsa_key.private_bytes(Encoding.DER, PrivateFormat.PKCS8, NoEncryption())
    return base64.b64encode(der).decode()


@pytest.fixture(scope="session")
def ec_pem() -> str:
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()).decode()


@pytest.fixture
def github_config(pkcs8_pem: str) -> GitHubAppConfig:
    return GitHubAppConfig(
        app_id=APP_ID,
        webhook_secret=WEBHOOK_SECRET,
        private_key=pkcs8_pem,
        app_slug="bfis-ci-tracker",
    )


def token_response(token: str = "ghs_test_token", expires_at: str | None = None) -> httpx.Response:
    """A 201 reply from the access_tokens endpoint."""
    return httpx.Response(
        201,
        json={
            "token": token,
            "expires_at": expires_at or "2099-01-01T00:00:00Z",
            "permissions": {"actions": "read"},
            "repository_selection": "all",
        },
    )


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


@pytest.fixture
def utc_now() -> datetime:
    return datetime.fromtimestamp(FIXED_NOW, tz=timezone.utc)


_CONFIG_ENV_VARS = (
    "GITHUB_APP_ID",
    "GITHUB_APP_WEBHOOK_SECRET",
    "GITHUB_APP_PRIVATE_KEY",
    "GITHUB_APP_PRIVATE_KEY_PATH",
    "GITHUB_APP_SLUG",
    "GITHUB_API_BASE_URL",
    "BFIS_FRONTEND_URL",
    "POSTHOG_API_KEY",
    "POSTHOG_HOST",
)


@pytest.fixture
def sample_config_path() -> Path:
    return FIXTURES_DIR / "sample_config.yml"


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """No BFIS env vars and no .bfis.yml reachable from the working directory."""
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
