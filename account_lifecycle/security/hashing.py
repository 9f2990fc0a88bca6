"""Keyed one-way digests for passwords and verification tokens."""

from __future__ import annotations

import hashlib
import hmac


class HmacCredentialHasher:
    """Deterministic HMAC-SHA256 hasher.

    Stores look credentials up by digest, so the same plaintext must always
    produce the same value; the server-side key keeps digests useless outside
    this deployment.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("credential hash secret must not be empty")
        self._key = secret.encode("utf-8")

    def hash(self, plaintext: str) -> str:
        """Return the hex digest for ``plaintext``."""
        return hmac.new(self._key, plaintext.encode("utf-8"), hashlib.sha256).hexdigest()
