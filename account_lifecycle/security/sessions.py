"""Request-scoped session binder backed by a signed session cookie."""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

import jwt

from ..domain.account import AccountProjection
from .tokens import decode_session_token, issue_session_token

logger = logging.getLogger(__name__)

PrincipalLoader = Callable[[str], AccountProjection | None]


class SessionRevocations(Protocol):
    def revoke(self, session_id: str, ttl_seconds: int) -> None:
        ...

    def is_revoked(self, session_id: str) -> bool:
        ...


class CookieSessionBinder:
    """Holds the principal named by the incoming session cookie.

    The cookie only names the account (``sub``) and the session (``jti``).
    The principal is reloaded through ``load`` the first time it is needed, so
    an account that has stopped being ACTIVE reads as anonymous. ``bind`` and
    ``clear`` revoke the session the cookie carried; the HTTP layer reads
    :attr:`changed` and :attr:`token` afterwards to set or delete the cookie.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        load: PrincipalLoader | None = None,
        revocations: SessionRevocations | None = None,
    ) -> None:
        self._load = load
        self._revocations = revocations
        self._subject: str | None = None
        self._session_id: str | None = None
        self._expires_at = 0
        self._projection: AccountProjection | None = None
        self._loaded = False
        self._authorities: frozenset[str] = frozenset()
        self.token: str | None = None
        self.changed = False
        if token:
            self._restore(token)

    def _restore(self, token: str) -> None:
        try:
            claims = decode_session_token(token)
            subject = str(claims["sub"])
            session_id = str(claims["jti"])
            expires_at = int(claims["exp"])
        except (jwt.PyJWTError, KeyError, TypeError, ValueError) as exc:
            logger.info("ignoring unusable session token: %s", exc)
            return
        if self._revocations is not None and self._revocations.is_revoked(session_id):
            logger.info("ignoring revoked session %s", session_id)
            return
        self._subject = subject
        self._session_id = session_id
        self._expires_at = expires_at
        self.token = token

    @property
    def authorities(self) -> frozenset[str]:
        self.current_identity()
        return self._authorities

    def bind(
        self, identity: str, authorities: frozenset[str], projection: AccountProjection
    ) -> None:
        self._revoke_current()
        issued = issue_session_token(subject=identity)
        self._subject = identity
        self._session_id = issued.session_id
        self._expires_at = issued.expires_at
        self._projection = projection
        self._authorities = frozenset(authorities)
        self._loaded = True
        self.token = issued.token
        self.changed = True

    def current_identity(self) -> AccountProjection | None:
        if not self._loaded:
            self._loaded = True
            if self._subject is not None and self._load is not None:
                self._projection = self._load(self._subject)
            if self._projection is not None:
                self._authorities = frozenset(perm.name for perm in self._projection.permissions)
            else:
                logger.info("session for %s no longer names an active account", self._subject)
        return self._projection

    def clear(self) -> None:
        self._revoke_current()
        self._subject = None
        self._session_id = None
        self._expires_at = 0
        self._projection = None
        self._authorities = frozenset()
        self._loaded = True
        self.token = None
        self.changed = True

    def _revoke_current(self) -> None:
        if self._session_id is None or self._revocations is None:
            return
        self._revocations.revoke(self._session_id, self._expires_at - int(time.time()))
