"""Configuration loading and validation for BFIS."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from bfis.exceptions import ConfigError

_DEFAULT_CONFIG_FILENAME = ".bfis.yml"

# Dotted config key -> environment variable consulted when the key is unset.
_ENV_FALLBACKS: dict[str, str] = {
    "github.app_id": "GITHUB_APP_ID",
    "github.webhook_secret": "GITHUB_APP_WEBHOOK_SECRET",
    "github.private_key": "GITHUB_APP_PRIVATE_KEY",
    "github.private_key_path": "GITHUB_APP_PRIVATE_KEY_PATH",
    "github.app_slug": "GITHUB_APP_SLUG",
    "github.api_base_url": "GITHUB_API_BASE_URL",
    "server.frontend_url": "BFIS_FRONTEND_URL",
    "metrics.posthog_api_key": "POSTHOG_API_KEY",
    "metrics.posthog_host": "POSTHOG_HOST",
}


class GitHubAppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    app_id: str = ""
    webhook_secret: str = ""
    private_key: str = ""
    private_key_path: str = ""
    app_slug: str = ""
    install_base_url: str = "https://github.com/apps"
    api_base_url: str = "https://api.github.com"
    request_timeout: float = Field(default=10.0, gt=0)
    coalesce_token_requests: bool = True

    @property
    def key_path_configured(self) -> bool:
        return bool(self.private_key_path.strip())

    @property
    def private_key_configured(self) -> bool:
        return self.key_path_configured or bool(self.private_key.strip())

    @property
    def install_url(self) -> str:
        return f"{self.install_base_url.rstrip('/')}/{self.app_slug}/installations/new"


class ServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)
    frontend_url: str = "http://localhost:3000"


class MetricsConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    posthog_api_key: str | None = None
    posthog_host: str | None = None


class BfisConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    github: GitHubAppConfig = Field(default_factory=GitHubAppConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Walk up from start_dir looking for .bfis.yml."""
    current = start_dir or Path.cwd()
    for directory in [current, *current.parents]:
        candidate = directory / _DEFAULT_CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def _load_yaml(path: Path) -> dict[str, Any]:
    """Read and parse a YAML config file, returning the top-level dict."""
    try:
        raw = path.read_text(encoding="utf-8")
        parsed = yaml.safe_load(raw)
        if parsed and isinstance(parsed, dict):
            return dict(parsed)
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e


def load_config(
    config_path: Path | str | None = None,
    overrides: dict[str, Any] | None = None,
) -> BfisConfig:
    """Load config from YAML file, apply overrides, fill gaps from the environment."""
    data: dict[str, Any] = {}

    if config_path is not None:
        path = Path(config_path)
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        data = _load_yaml(path)
    else:
        found = find_config_file()
        if found:
            data = _load_yaml(found)

    if overrides:
        for key, value in overrides.items():
            _set_nested(data, key.split("."), value)

    # Environment variables only fill keys that neither the file nor overrides set
    for dotted, env_name in _ENV_FALLBACKS.items():
        env_value = os.environ.get(env_name)
        keys = dotted.split(".")
        if env_value and _get_nested(data, keys) is None:
            _set_nested(data, keys, env_value)

    try:
        return BfisConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def _set_nested(d: dict[str, Any], keys: list[str], value: Any) -> None:
    """Set a value in a nested dict using a list of keys."""
    for key in keys[:-1]:
        d = d.setdefault(key, {})
    d[keys[-1]] = value


def _get_nested(d: dict[str, Any], keys: list[str]) -> Any:
    for key in keys:
        if not isinstance(d, dict) or key not in d:
            return None
        d = d[key]
    return d
