"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class RegistrationInput:
    """Details supplied by a prospective user when registering."""

    username: str
    password: str
    first_name: str
    last_name: str
    email: str


@dataclass(slots=True)
class VerificationInput:
    """Name hints and the emailed token presented to complete self-verification."""

    first_name: str
    last_name: str
    token: str


@dataclass(slots=True)
class ProfileUpdateInput:
    """Self-service update of the signed-in account."""

    first_name: str
    last_name: str
    current_password: str
    new_password: str | None = None


@dataclass(slots=True)
class PasswordResetInput:
    """Token plus the new password typed twice."""

    token: str
    new_password: str | None
    confirmation: str | None


@dataclass(slots=True)
class AccountUpdateInput:
    """Full administrative update payload."""

    username: str
    first_name: str
    last_name: str
    email: str
    security_level: str
    role_id: int
    active: bool
    password: str | None = None
