"""Private key resolution for GitHub App authentication.

Operators supply the app's private key in whatever shape their deployment
allows: a PEM file on disk, PEM text inline, base64 of the PEM text (for
environments that forbid newlines in variables), or base64 of the raw PKCS#8
DER bytes. No flag says which one was used, so the resolver runs an ordered
chain of parsers over the material and takes the first that succeeds.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.hazmat.primitives.serialization import (
    load_der_private_key,
    load_pem_private_key,
)

from bfis.config import GitHubAppConfig
from bfis.exceptions import KeyResolutionError, KeyResolutionReason

logger = logging.getLogger(__name__)

_PEM_MARKER = "BEGIN "


@dataclass(frozen=True)
class KeyParseResult:
    """Outcome of one parser attempt: either a key or the reason it failed."""

    parser: str
    key: PrivateKeyTypes | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.key is not None


KeyParser = Callable[[str], KeyParseResult]


def _load_pem(parser: str, pem_text: str) -> KeyParseResult:
    """Parse PEM text holding either a PKCS#1 ``RSA PRIVATE KEY`` or a PKCS#8 ``PRIVATE KEY``."""
    text = pem_text.strip()
    # Single-line env values often carry literal "\n" sequences instead of newlines
    if "\\n" in text and "\n" not in text:
        text = text.replace("\\n", "\n")
    try:
        key = load_pem_private_key(text.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        return KeyParseResult(parser, error=e)
    return KeyParseResult(parser, key=key)


def _b64decode(material: str) -> bytes:
    compact = "".join(material.split())
    return base64.b64decode(compact, validate=True)


def parse_pem_text(material: str) -> KeyParseResult:
    """Material is PEM text as-is."""
    if _PEM_MARKER not in material:
        return KeyParseResult("pem", error=ValueError("no PEM armor marker"))
    return _load_pem("pem", material)


def parse_base64_pem(material: str) -> KeyParseResult:
    """Material is base64 wrapping PEM text."""
    try:
        decoded = _b64decode(material)
    except (binascii.Error, ValueError) as e:
        return KeyParseResult("base64-pem", error=e)
    decoded_text = decoded.decode("ascii", errors="ignore")
    if _PEM_MARKER not in decoded_text:
        return KeyParseResult("base64-pem", error=ValueError("decoded bytes are not PEM text"))
    return _load_pem("base64-pem", decoded_text)


def parse_base64_der(material: str) -> KeyParseResult:
    """Material is base64 of PKCS#8 DER bytes."""
    try:
        der = _b64decode(material)
        key = load_der_private_key(der, password=None)
    except (binascii.Error, ValueError, TypeError, UnsupportedAlgorithm) as e:
        return KeyParseResult("base64-der", error=e)
    return KeyParseResult("base64-der", key=key)


DEFAULT_PARSERS: tuple[KeyParser, ...] = (parse_pem_text, parse_base64_pem, parse_base64_der)


class KeyMaterialResolver:
    """Locates the configured private key material and parses it into a signing key."""

    def __init__(
        self,
        config: GitHubAppConfig,
        parsers: Sequence[KeyParser] = DEFAULT_PARSERS,
    ) -> None:
        self._config = config
        self._parsers = tuple(parsers)

    def read_material(self) -> str:
        """Return the raw key text; the file path wins over the inline value."""
        if self._config.key_path_configured:
            path = Path(self._config.private_key_path.strip())
            try:
                exists = path.exists()
                is_file = exists and path.is_file()
            except OSError as e:
                raise KeyResolutionError(
                    KeyResolutionReason.UNREADABLE,
                    f"Failed to inspect GitHub private key path: {path}",
                    cause=e,
                ) from e
            if not exists:
                raise KeyResolutionError(
                    KeyResolutionReason.MISSING,
                    f"GitHub private key path does not exist: {path}",
                )
            if not is_file:
                raise KeyResolutionError(
                    KeyResolutionReason.NOT_A_FILE,
                    f"GitHub private key path is not a file: {path}",
                )
            try:
                return path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise KeyResolutionError(
                    KeyResolutionReason.UNREADABLE,
                    f"Failed to read GitHub private key from path: {path}",
                    cause=e,
                ) from e

        material = self._config.private_key
        if not material.strip():
            raise KeyResolutionError(
                KeyResolutionReason.UNCONFIGURED, "GitHub private key is not configured"
            )
        return material

    def parse(self, material: str) -> PrivateKeyTypes:
        """Run the parser chain over key material, returning the first key produced."""
        text = material.strip()
        failures: list[KeyParseResult] = []
        for parser in self._parsers:
            result = parser(text)
            if result.ok:
                logger.debug("Parsed GitHub private key as %s", result.parser)
                return result.key  # type: ignore[return-value]
            failures.append(result)

        detail = "; ".join(f"{f.parser}: {f.error}" for f in failures)
        first_cause = failures[0].error if failures else None
        raise KeyResolutionError(
            KeyResolutionReason.UNPARSEABLE,
            f"Unsupported or malformed GitHub private key ({detail or 'no parsers'})",
            cause=first_cause,
        ) from first_cause

    def resolve(self) -> PrivateKeyTypes:
        """Read and parse the configured key. Raises KeyResolutionError."""
        return self.parse(self.read_material())

    def describe_source(self) -> dict[str, Any]:
        """Report where the key would be read from, without touching its contents."""
        info: dict[str, Any] = {
            "privateKeyConfigured": self._config.private_key_configured,
            "privateKeyPathConfigured": self._config.key_path_configured,
            "privateKeySource": "path" if self._config.key_path_configured else "env",
        }
        if self._config.key_path_configured:
            path = Path(self._config.private_key_path.strip())
            info["privateKeyPath"] = str(path)
            try:
                info["privateKeyPathExists"] = path.exists()
                info["privateKeyPathIsFile"] = path.is_file()
            except OSError as e:
                info["privateKeyPathExists"] = False
                info["privateKeyPathIsFile"] = False
                info["privateKeyPathError"] = f"{type(e).__name__}: {e}"
        return info
