"""Server-side record of ended sessions, keyed by the session token's ``jti``."""

from __future__ import annotations

import time
from threading import Lock
from typing import Any


class InMemorySessionRevocations:
    """Process-local revocation list; entries expire with the token they revoke."""

    def __init__(self) -> None:
        self._revoked: dict[str, float] = {}
        self._lock = Lock()

    def revoke(self, session_id: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        with self._lock:
            self._purge(time.time())
            self._revoked[session_id] = time.time() + ttl_seconds

    def is_revoked(self, session_id: str) -> bool:
        with self._lock:
            expires_at = self._revoked.get(session_id)
            if expires_at is None:
                return False
            if expires_at <= time.time():
                del self._revoked[session_id]
                return False
            return True

    def _purge(self, now: float) -> None:
        for session_id in [sid for sid, expiry in self._revoked.items() if expiry <= now]:
            del self._revoked[session_id]


class RedisSessionRevocations:
    """Revocation list shared across workers; Redis expires each key with its token."""

    def __init__(self, client: Any, *, key_prefix: str = "accounts") -> None:
        self._client = client
        self._key_prefix = key_prefix

    def revoke(self, session_id: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        self._client.set(self._key(session_id), 1, ex=ttl_seconds)

    def is_revoked(self, session_id: str) -> bool:
        return bool(self._client.exists(self._key(session_id)))

    def _key(self, session_id: str) -> str:
        return f"{self._key_prefix}:revoked-session:{session_id}"
