from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .errors import InvalidConfiguration


class AccountStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"


class SecurityLevel(str, Enum):
    PUBLIC = "PUBLIC"
    CONFIDENTIAL = "CONFIDENTIAL"
    PRIVATE = "PRIVATE"

    @classmethod
    def resolve(cls, name: str | None) -> "SecurityLevel":
        """Look up a level by name, raising ``InvalidConfiguration`` for unknown names."""
        try:
            return cls(name)
        except ValueError as exc:
            raise InvalidConfiguration(f"bad access level name: {name}") from exc


@dataclass(frozen=True, slots=True)
class Permission:
    permission_id: int
    name: str


@dataclass(frozen=True, slots=True)
class Role:
    """Named bundle of permissions assigned to accounts."""

    role_id: int
    name: str
    permissions: tuple[Permission, ...] = ()

    def authorities(self) -> frozenset[str]:
        """Capability tags granted to a session bound to this role."""
        return frozenset(permission.name for permission in self.permissions)


@dataclass(slots=True)
class Account:
    """Aggregate root for a registered user and its credentials.

    ``status`` is the only stored lifecycle state; ``active`` is derived from it.
    """

    account_id: str | None
    username: str
    password_hash: str
    first_name: str
    last_name: str
    email: str
    role: Role | None = None
    status: AccountStatus = AccountStatus.PENDING
    security_level: SecurityLevel = SecurityLevel.PUBLIC
    token_hash: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def active(self) -> bool:
        return self.status is AccountStatus.ACTIVE

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def activate(self) -> None:
        self.status = AccountStatus.ACTIVE

    def set_active(self, active: bool) -> None:
        """Translate the boundary's boolean flag into a status."""
        self.status = AccountStatus.ACTIVE if active else AccountStatus.DISABLED

    def clear_token(self) -> None:
        self.token_hash = None


@dataclass(frozen=True, slots=True)
class AccountProjection:
    """Read view of an account; never carries password or token hashes."""

    account_id: str | None
    username: str
    first_name: str
    last_name: str
    email: str
    status: str
    active: bool
    security_level: str
    role_id: int | None = None
    role_name: str | None = None
    permissions: tuple[Permission, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None
    credentials_expired: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @classmethod
    def from_domain(cls, account: Account) -> "AccountProjection":
        role = account.role
        return cls(
            account_id=account.account_id,
            username=account.username,
            first_name=account.first_name,
            last_name=account.last_name,
            email=account.email,
            status=account.status.value,
            active=account.active,
            security_level=account.security_level.value,
            role_id=role.role_id if role else None,
            role_name=role.name if role else None,
            permissions=role.permissions if role else (),
            created_at=account.created_at,
            updated_at=account.updated_at,
        )

    @classmethod
    def anonymous(cls) -> "AccountProjection":
        """Projection rendered when no principal is bound to the session."""
        return cls(
            account_id=None,
            username="anonymous",
            first_name="No",
            last_name="One",
            email="no.one@here.com",
            status=AccountStatus.DISABLED.value,
            active=False,
            security_level=SecurityLevel.PUBLIC.value,
            role_name="Browser",
            credentials_expired=True,
        )
