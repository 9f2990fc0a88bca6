"""Typed failures raised by the account lifecycle core."""

from __future__ import annotations


class AccountLifecycleError(Exception):
    """Base class for failures surfaced to the HTTP boundary."""


class AccountNotFound(AccountLifecycleError):
    """A lookup by credentials, token, email or id matched nothing.

    The message is deliberately generic so callers cannot tell a wrong
    password from an unknown or inactive account.
    """

    def __init__(self, message: str = "account not found") -> None:
        super().__init__(message)


class DuplicateAccount(AccountLifecycleError):
    """Username, email or token collided with an existing account."""


class InvalidConfiguration(AccountLifecycleError):
    """A configured or supplied role/access-level name did not resolve."""


class UniquenessViolation(Exception):
    """Raised by account stores when a unique constraint rejects a write."""
