"""Utilities for one-time verification tokens and signed session tokens."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable

import jwt

from ..config import get_settings


class OneTimeSecret:
    """Plaintext verification/reset token that only leaves the process by email.

    The value is redacted from ``repr``/``str`` and can be dropped with
    :meth:`discard` once the notification carrying it has been dispatched.
    """

    __slots__ = ("_value",)

    def __init__(self, value: str) -> None:
        self._value: str | None = value

    def reveal(self) -> str:
        if self._value is None:
            raise ValueError("secret already discarded")
        return self._value

    def discard(self) -> None:
        self._value = None

    @property
    def discarded(self) -> bool:
        return self._value is None

    def __repr__(self) -> str:
        return "OneTimeSecret(<redacted>)"

    __str__ = __repr__


def generate_token(hash_token: Callable[[str], str]) -> tuple[OneTimeSecret, str]:
    """Generate a one-time token and the digest that is persisted in its place."""
    token = secrets.token_urlsafe(48)
    return OneTimeSecret(token), hash_token(token)


@dataclass(frozen=True, slots=True)
class SessionToken:
    """Encoded session JWT plus the claims needed to revoke it later."""

    token: str
    session_id: str
    expires_at: int


def issue_session_token(*, subject: str) -> SessionToken:
    """Create a signed JWT naming the bound account.

    The token carries only the account id and a session id (``jti``); the
    principal's profile and authorities are reloaded from the store on every
    request so a deactivated account loses access immediately.

    Parameters
    ----------
    subject:
        Account identifier to embed in the token `sub` claim.
    """

    settings = get_settings()
    now = int(time.time())
    session_id = secrets.token_urlsafe(16)
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "sub": subject,
        "jti": session_id,
        "iat": now,
        "exp": now + settings.session_ttl_seconds,
    }

    token = jwt.encode(payload, settings.jwt_secret, algorithm="HS256")
    return SessionToken(token=token, session_id=session_id, expires_at=payload["exp"])


def decode_session_token(token: str) -> dict[str, Any]:
    """Decode and verify a session JWT returning its payload.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is invalid, expired, or signed by another issuer.
    """

    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        issuer=settings.jwt_issuer,
    )
