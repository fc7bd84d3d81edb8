"""Click CLI for the BFIS GitHub App core."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click

from bfis import __version__
from bfis.config import BfisConfig, load_config
from bfis.exceptions import BfisError
from bfis.github_app.cache import TokenCache
from bfis.github_app.credentials import GitHubAppCredentials
from bfis.models import AppIdentityAssertion, DiscoveryResult


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s %(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def _load(config_path: str | None, overrides: dict[str, Any]) -> BfisConfig:
    try:
        return load_config(config_path, overrides)
    except BfisError as e:
        raise click.ClickException(str(e)) from e


def _key_overrides(
    app_id: str | None, private_key: str | None, private_key_path: str | None
) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if app_id:
        overrides["github.app_id"] = app_id
    if private_key:
        overrides["github.private_key"] = private_key
    if private_key_path:
        overrides["github.private_key_path"] = private_key_path
    return overrides


def _format_assertion(assertion: AppIdentityAssertion, show_token: bool) -> str:
    lines = [
        f"iss: {assertion.issuer}",
        f"iat: {assertion.issued_at}",
        f"exp: {assertion.expires_at} (+{assertion.lifetime}s)",
    ]
    if show_token:
        lines.append(f"token: {assertion.token}")
    return "\n".join(lines)


def _format_installations(result: DiscoveryResult) -> str:
    if result.error:
        return f"Installation discovery failed: {result.error}"
    if not result.installations:
        return "No installations found."
    lines = [f"{r.installation_id}\t{r.account_login or '-'}" for r in result.installations]
    lines.append(f"{len(result.installations)} installation(s).")
    return "\n".join(lines)


@click.group()
@click.version_option(version=__version__, prog_name="bfis")
def main() -> None:
    """BFIS GitHub App credentials."""


_app_id_option = click.option("--app-id", default=None, help="GitHub App ID")
_private_key_option = click.option(
    "--private-key",
    default=None,
    help="PEM, base64 PEM or base64 DER key material",
)
_private_key_path_option = click.option(
    "--private-key-path",
    default=None,
    help="Path to the private key file (takes precedence over --private-key)",
)
_config_option = click.option("--config", "config_path", default=None, help="Path to .bfis.yml")
_verbose_option = click.option("--verbose", is_flag=True, help="Enable verbose logging")


@main.command("jwt-check")
@_app_id_option
@_private_key_option
@_private_key_path_option
@click.option("--show-token", is_flag=True, help="Print the signed JWT as well as its claims")
@_config_option
@_verbose_option
def jwt_check(
    app_id: str | None,
    private_key: str | None,
    private_key_path: str | None,
    show_token: bool,
    config_path: str | None,
    verbose: bool,
) -> None:
    """Mint an app JWT to check the key and app id configuration."""
    _configure_logging(verbose)
    config = _load(config_path, _key_overrides(app_id, private_key, private_key_path))
    credentials = GitHubAppCredentials(config.github, TokenCache())

    try:
        assertion = credentials.mint_app_identity()
    except BfisError as e:
        raise click.ClickException(str(e)) from e

    click.echo(_format_assertion(assertion, show_token))


@main.command()
@_app_id_option
@_private_key_option
@_private_key_path_option
@click.option("--output", "output_format", type=click.Choice(["text", "json"]), default="text")
@_config_option
@_verbose_option
def installations(
    app_id: str | None,
    private_key: str | None,
    private_key_path: str | None,
    output_format: str,
    config_path: str | None,
    verbose: bool,
) -> None:
    """List installations of the GitHub App."""
    _configure_logging(verbose)
    config = _load(config_path, _key_overrides(app_id, private_key, private_key_path))
    credentials = GitHubAppCredentials(config.github, TokenCache())

    result = asyncio.run(credentials.discover_installations())

    if output_format == "json":
        click.echo(
            json.dumps(
                {
                    "count": len(result.installations),
                    "installations": [r.to_dict() for r in result.installations],
                    "lastError": result.error,
                },
                indent=2,
            )
        )
    else:
        click.echo(_format_installations(result))

    if result.error:
        sys.exit(1)


@main.command()
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", envvar="PORT", default=None, type=int, help="Port to bind to")
@_app_id_option
@_private_key_option
@_private_key_path_option
@click.option(
    "--webhook-secret",
    default=None,
    help="Webhook secret from GitHub App settings",
)
@_config_option
@_verbose_option
def serve(
    host: str | None,
    port: int | None,
    app_id: str | None,
    private_key: str | None,
    private_key_path: str | None,
    webhook_secret: str | None,
    config_path: str | None,
    verbose: bool,
) -> None:
    """Run the BFIS GitHub App server."""
    try:
        import uvicorn

        from bfis.github_app.metrics import Metrics
        from bfis.github_app.server import create_app
    except ImportError as exc:
        raise click.ClickException(
            f"Missing dependency: {exc}. Install with: pip install bfis-github-app[serve]"
        ) from exc

    _configure_logging(verbose)

    overrides = _key_overrides(app_id, private_key, private_key_path)
    if webhook_secret:
        overrides["github.webhook_secret"] = webhook_secret
    if host:
        overrides["server.host"] = host
    if port is not None:
        overrides["server.port"] = port
    config = _load(config_path, overrides)

    if not config.github.webhook_secret:
        raise click.UsageError("--webhook-secret or GITHUB_APP_WEBHOOK_SECRET is required")

    metrics = Metrics.from_config(config.metrics)
    credentials = GitHubAppCredentials(config.github, TokenCache(), metrics=metrics)
    app = create_app(credentials, frontend_url=config.server.frontend_url, metrics=metrics)

    click.echo(f"Starting BFIS GitHub App server on {config.server.host}:{config.server.port}")
    uvicorn.run(app, host=config.server.host, port=config.server.port)
