"""Webhook signature verification for the BFIS GitHub App."""

from __future__ import annotations

import hashlib
import hmac
import logging
import re

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
_SIGNATURE_PREFIX = "sha256="
_HEX_DIGEST = re.compile(r"[0-9a-fA-F]+")


class WebhookVerifier:
    """Checks ``X-Hub-Signature-256`` against an HMAC-SHA256 of the raw request body.

    Always hash the bytes exactly as received; re-serializing parsed JSON
    changes them. Never raises: any malformed header verifies as False.
    """

    def __init__(self, secret: str) -> None:
        self._secret = secret.encode("utf-8")

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def expected_signature(self, payload_bytes: bytes) -> str:
        digest = hmac.new(self._secret, payload_bytes, hashlib.sha256).hexdigest()
        return f"{_SIGNATURE_PREFIX}{digest}"

    def verify(self, payload_bytes: bytes, signature_header: str | None) -> bool:
        """Return True only if the header carries the payload's signature (timing-safe)."""
        if not self._secret:
            logger.warning("Webhook secret is not configured; rejecting delivery")
            return False
        if not signature_header or not signature_header.startswith(_SIGNATURE_PREFIX):
            logger.warning("Invalid webhook signature format")
            return False

        received = signature_header[len(_SIGNATURE_PREFIX) :]
        if not _HEX_DIGEST.fullmatch(received):
            logger.warning("Webhook signature is not a hex digest")
            return False

        expected = hmac.new(self._secret, payload_bytes, hashlib.sha256).hexdigest()
        valid = hmac.compare_digest(expected, received.lower())
        if not valid:
            logger.warning("Webhook signature verification failed")
        return valid
