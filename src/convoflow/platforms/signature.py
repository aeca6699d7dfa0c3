"""X-Hub-Signature-256 checks for Meta-hosted platforms.

WhatsApp Cloud API, Instagram and Messenger webhooks are signed by the same
Meta app. META_APP_SECRET may hold several comma-separated secrets so a
rotated secret keeps working until every subscription is re-signed.
"""

from __future__ import annotations

import hashlib
import hmac
import os

SIGNED_PLATFORMS = frozenset({"whatsapp", "instagram", "facebook"})
_PREFIX = "sha256="


class SignatureVerificationError(Exception):
    """Raised when a signed webhook does not match any app secret."""

    pass


def compute_signature(body: bytes, secret: str) -> str:
    """Header value Meta would send for `body` ("sha256=<hex>")."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return _PREFIX + digest


class MetaSignatureVerifier:
    def __init__(self, secrets: list[str]) -> None:
        self._secrets = [s for s in secrets if s]

    @classmethod
    def from_env(cls) -> "MetaSignatureVerifier":
        return cls(os.environ.get("META_APP_SECRET", "").split(","))

    @property
    def enabled(self) -> bool:
        return bool(self._secrets)

    def applies_to(self, platform: str) -> bool:
        """Signatures are enforced only for Meta platforms, and only once configured."""
        return self.enabled and platform in SIGNED_PLATFORMS

    def verify(self, body: bytes, header: str | None) -> None:
        """Check `header` against every configured secret.

        Raises:
            SignatureVerificationError: Missing, malformed or non-matching header.
        """
        if not header:
            raise SignatureVerificationError("missing signature header")
        if not header.startswith(_PREFIX) or len(header) != len(_PREFIX) + 64:
            raise SignatureVerificationError("invalid signature format")

        candidate = header.lower()
        for secret in self._secrets:
            if hmac.compare_digest(compute_signature(body, secret), candidate):
                return
        raise SignatureVerificationError("signature mismatch")
