from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Iterable

import pytest

from account_lifecycle.config import Settings
from account_lifecycle.domain.account import (
    Account,
    AccountProjection,
    AccountStatus,
    Permission,
    Role,
    SecurityLevel,
)
from account_lifecycle.domain.errors import AccountNotFound, UniquenessViolation
from account_lifecycle.domain.service import AccountLifecycleManager
from account_lifecycle.security.hashing import HmacCredentialHasher
from account_lifecycle.security.tokens import OneTimeSecret

ADMIN_ROLE = Role(role_id=1, name="Admin", permissions=(Permission(1, "admin"), Permission(2, "read")))
MEMBER_ROLE = Role(role_id=2, name="Member", permissions=(Permission(2, "read"), Permission(3, "write")))
BROWSER_ROLE = Role(role_id=3, name="Browser", permissions=(Permission(2, "read"),))


class FakeAccountStore:
    """In-memory store mimicking the Postgres repository's lookup and uniqueness rules."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self.units_of_work = 0

    @contextmanager
    def unit_of_work(self):
        self.units_of_work += 1
        yield

    def _match(self, predicate, active_only: bool) -> Account | None:
        for account in self._accounts.values():
            if active_only and account.status is not AccountStatus.ACTIVE:
                continue
            if predicate(account):
                return replace(account)
        return None

    def find_by_username_and_hashed_password(self, username, hashed_password, active_only=True):
        return self._match(
            lambda a: a.username.lower() == username.lower() and a.password_hash == hashed_password,
            active_only,
        )

    def find_by_email_and_hashed_password(self, email, hashed_password, active_only=True):
        return self._match(
            lambda a: a.email.lower() == email.lower() and a.password_hash == hashed_password,
            active_only,
        )

    def find_by_username(self, username, active_only=True):
        return self._match(lambda a: a.username.lower() == username.lower(), active_only)

    def find_by_email(self, email, active_only=True):
        return self._match(lambda a: a.email.lower() == email.lower(), active_only)

    def find_by_hashed_token(self, token_hash, active_only=True):
        return self._match(lambda a: a.token_hash is not None and a.token_hash == token_hash, active_only)

    def find_by_id(self, account_id, active_only=True):
        return self._match(lambda a: a.account_id == account_id, active_only)

    def find_by_role(self, role_id):
        return [replace(a) for a in self._accounts.values() if a.role and a.role.role_id == role_id]

    def list_accounts(self):
        return [replace(a) for a in sorted(self._accounts.values(), key=lambda a: a.created_at, reverse=True)]

    def get_by_id(self, account_id):
        account = self._accounts.get(account_id)
        if account is None:
            raise AccountNotFound()
        return replace(account)

    def save(self, account: Account) -> Account:
        for other in self._accounts.values():
            if other.account_id == account.account_id:
                continue
            if (
                other.username.lower() == account.username.lower()
                or other.email.lower() == account.email.lower()
                or (account.token_hash is not None and other.token_hash == account.token_hash)
            ):
                raise UniquenessViolation("duplicate key value violates unique constraint")
        now = datetime.now(timezone.utc)
        stored = replace(account)
        if stored.account_id is None:
            stored.account_id = str(uuid.uuid4())
            stored.created_at = now
        stored.updated_at = now
        self._accounts[stored.account_id] = stored
        return replace(stored)

    def stored(self, account_id: str) -> Account:
        """Test helper returning the persisted record without copying."""
        return self._accounts[account_id]


class FakeRoleResolver:
    def __init__(self, roles: Iterable[Role] = (ADMIN_ROLE, MEMBER_ROLE, BROWSER_ROLE)) -> None:
        self._roles = {role.role_id: role for role in roles}

    def find_by_name(self, name):
        return next((role for role in self._roles.values() if role.name == name), None)

    def find_by_id(self, role_id):
        return self._roles.get(role_id)


@dataclass
class SentNotification:
    recipients: list[str]
    subject: str
    template: str
    payload: Any


class RecordingDispatcher:
    """Captures notifications; one-time secrets are revealed at send time like a real transport."""

    def __init__(self) -> None:
        self.sent: list[SentNotification] = []
        self.fail = False

    def send(self, recipients, subject, template, payload=None):
        if self.fail:
            raise ConnectionError("smtp relay unavailable")
        if isinstance(payload, OneTimeSecret):
            payload = payload.reveal()
        to = [recipients] if isinstance(recipients, str) else list(recipients)
        self.sent.append(SentNotification(to, subject, template, payload))

    def templates(self) -> list[str]:
        return [notification.template for notification in self.sent]


class FakeSession:
    def __init__(self) -> None:
        self.identity: str | None = None
        self.authorities: frozenset[str] = frozenset()
        self.projection: AccountProjection | None = None

    def bind(self, identity, authorities, projection):
        self.identity = identity
        self.authorities = authorities
        self.projection = projection

    def current_identity(self):
        return self.projection

    def clear(self):
        self.identity = None
        self.authorities = frozenset()
        self.projection = None


@pytest.fixture
def settings() -> Settings:
    return Settings(
        portal_name="Test Portal",
        registration_auto_approve=True,
        registration_email_suffixes=("@example.com", "@Corp.Example.org"),
        registration_initial_role="Member",
        registration_initial_access_level="CONFIDENTIAL",
        default_role="Browser",
        default_access_level="PUBLIC",
        admin_emails=("admin@example.com", "ops@example.com"),
    )


@pytest.fixture
def hasher() -> HmacCredentialHasher:
    return HmacCredentialHasher("test-hash-secret")


@pytest.fixture
def store() -> FakeAccountStore:
    return FakeAccountStore()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def roles() -> FakeRoleResolver:
    return FakeRoleResolver()


@pytest.fixture
def manager(store, roles, hasher, dispatcher, settings) -> AccountLifecycleManager:
    return AccountLifecycleManager(
        store=store, roles=roles, hasher=hasher, dispatcher=dispatcher, settings=settings
    )


@pytest.fixture
def seed_account(store, hasher):
    """Persist an account directly, bypassing the lifecycle manager."""

    def _seed(
        username: str = "ada",
        password: str = "s3cret",
        email: str = "ada@example.com",
        status: AccountStatus = AccountStatus.ACTIVE,
        role: Role = MEMBER_ROLE,
        first_name: str = "Ada",
        last_name: str = "Lovelace",
    ) -> Account:
        return store.save(
            Account(
                account_id=None,
                username=username,
                password_hash=hasher.hash(password),
                first_name=first_name,
                last_name=last_name,
                email=email,
                role=role,
                status=status,
                security_level=SecurityLevel.PUBLIC,
            )
        )

    return _seed
