"""Contracts the lifecycle manager consumes from its collaborators."""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, Iterable, Protocol

from .account import Account, AccountProjection, Role


class AccountStore(Protocol):
    """Persistence for accounts. Uniqueness is enforced when ``save`` commits."""

    def unit_of_work(self) -> AbstractContextManager[None]:
        ...

    def find_by_username_and_hashed_password(
        self, username: str, hashed_password: str, active_only: bool = True
    ) -> Account | None:
        ...

    def find_by_email_and_hashed_password(
        self, email: str, hashed_password: str, active_only: bool = True
    ) -> Account | None:
        ...

    def find_by_username(self, username: str, active_only: bool = True) -> Account | None:
        ...

    def find_by_email(self, email: str, active_only: bool = True) -> Account | None:
        ...

    def find_by_hashed_token(self, token_hash: str, active_only: bool = True) -> Account | None:
        ...

    def find_by_id(self, account_id: str, active_only: bool = True) -> Account | None:
        ...

    def find_by_role(self, role_id: int) -> list[Account]:
        ...

    def list_accounts(self) -> list[Account]:
        ...

    def save(self, account: Account) -> Account:
        """Insert or update; raises ``UniquenessViolation`` on conflicting username/email/token."""
        ...

    def get_by_id(self, account_id: str) -> Account:
        """Return the account or raise ``AccountNotFound``."""
        ...


class RoleResolver(Protocol):
    def find_by_name(self, name: str) -> Role | None:
        ...

    def find_by_id(self, role_id: int) -> Role | None:
        ...


class CredentialHasher(Protocol):
    def hash(self, plaintext: str) -> str:
        ...


class NotificationDispatcher(Protocol):
    def send(
        self,
        recipients: str | Iterable[str],
        subject: str,
        template: str,
        payload: Any | None = None,
    ) -> None:
        ...


class SessionBinder(Protocol):
    """Request-scoped holder of the authenticated principal."""

    def bind(
        self, identity: str, authorities: frozenset[str], projection: AccountProjection
    ) -> None:
        ...

    def current_identity(self) -> AccountProjection | None:
        ...

    def clear(self) -> None:
        ...
