"""Account lifecycle manager orchestrating registration, verification, sessions and resets."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from .account import Account, AccountProjection, AccountStatus, Role, SecurityLevel
from .contracts import (
    AccountUpdateInput,
    PasswordResetInput,
    ProfileUpdateInput,
    RegistrationInput,
    VerificationInput,
)
from .errors import AccountNotFound, DuplicateAccount, InvalidConfiguration, UniquenessViolation
from .ports import AccountStore, CredentialHasher, NotificationDispatcher, RoleResolver, SessionBinder
from ..config import Settings
from ..metrics import LIFECYCLE_TRANSITIONS, NOTIFICATION_FAILURES
from ..notifications import NotificationTemplate
from ..security.tokens import OneTimeSecret, generate_token

logger = logging.getLogger(__name__)


class AccountLifecycleManager:
    """Sole writer of account status and token transitions.

    Every mutating operation performs its read-modify-save inside the store's
    unit of work; notifications go out only after that unit of work commits
    and a failed notification never undoes the transition.
    """

    def __init__(
        self,
        store: AccountStore,
        roles: RoleResolver,
        hasher: CredentialHasher,
        dispatcher: NotificationDispatcher,
        settings: Settings,
    ) -> None:
        """Store collaborators used to persist, resolve roles, hash credentials and notify."""
        self._store = store
        self._roles = roles
        self._hasher = hasher
        self._dispatcher = dispatcher
        self._settings = settings

    def register(self, payload: RegistrationInput) -> AccountProjection:
        """Create a PENDING account and start self-verification or admin review.

        Raises
        ------
        InvalidConfiguration
            The configured role or access-level name for the chosen path does not resolve.
        DuplicateAccount
            The store rejected the username or email as already taken.
        """
        account = Account(
            account_id=None,
            username=payload.username,
            password_hash=self._hasher.hash(payload.password),
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email,
            status=AccountStatus.PENDING,
        )

        secret: OneTimeSecret | None = None
        if self._settings.registration_auto_approve and self._email_qualifies(payload.email):
            level_name = self._settings.registration_initial_access_level
            role_name = self._settings.registration_initial_role
            secret, account.token_hash = generate_token(self._hasher.hash)
        else:
            level_name = self._settings.default_access_level
            role_name = self._settings.default_role

        account.security_level = SecurityLevel.resolve(level_name)
        account.role = self._role_by_name(role_name)

        with self._store.unit_of_work():
            saved = self._save(account)
        logger.info(
            "account %s registered as %s (self-verification=%s)",
            saved.account_id,
            saved.username,
            secret is not None,
        )
        LIFECYCLE_TRANSITIONS.labels(operation="register").inc()

        summary = f"{saved.full_name} ({saved.email})"
        if secret is not None:
            try:
                self._notify(
                    saved.email,
                    "Registration Verification",
                    NotificationTemplate.USER_VERIFICATION_REQUESTED,
                    secret,
                )
            finally:
                secret.discard()
            self._notify(
                self._settings.admin_emails,
                "New User Verification Requested",
                NotificationTemplate.ADMIN_USER_VERIFICATION_REQUESTED,
                summary,
            )
        else:
            self._notify(saved.email, "Registration Received", NotificationTemplate.USER_REGISTERED)
            self._notify(
                self._settings.admin_emails,
                "New User Registration",
                NotificationTemplate.ADMIN_USER_REGISTERED,
                summary,
            )
        return AccountProjection.from_domain(saved)

    def verify(self, payload: VerificationInput) -> bool:
        """Complete self-verification for a PENDING account holding the presented token."""
        with self._store.unit_of_work():
            account = self._store.find_by_hashed_token(
                self._hasher.hash(payload.token), active_only=False
            )
            if (
                account is None
                or account.status is not AccountStatus.PENDING
                or not _same_name(account.first_name, payload.first_name)
                or not _same_name(account.last_name, payload.last_name)
            ):
                raise AccountNotFound()
            account.activate()
            account.clear_token()
            saved = self._save(account)
        logger.info("account %s verified", saved.account_id)
        LIFECYCLE_TRANSITIONS.labels(operation="verify").inc()

        self._notify(saved.email, "Registration Completed", NotificationTemplate.USER_VERIFIED)
        self._notify(
            self._settings.admin_emails,
            "New User Verified",
            NotificationTemplate.ADMIN_USER_VERIFIED,
            f"{saved.full_name} ({saved.email})",
        )
        return True

    def sign_in(self, username: str, password: str, session: SessionBinder) -> AccountProjection:
        """Authenticate an ACTIVE account and bind it, with its authorities, to ``session``."""
        account = self._store.find_by_username_and_hashed_password(
            username, self._hasher.hash(password), active_only=True
        )
        if account is None or not account.active:
            raise AccountNotFound()

        projection = AccountProjection.from_domain(account)
        session.bind(account.account_id, _authorities(account.role), projection)
        logger.info("account %s signed in", account.account_id)
        LIFECYCLE_TRANSITIONS.labels(operation="sign_in").inc()
        return projection

    def sign_out(self, session: SessionBinder) -> bool:
        session.clear()
        return True

    def get_current_account(self, session: SessionBinder) -> AccountProjection:
        """Return the bound principal, or the anonymous projection when nobody is signed in."""
        current = session.current_identity()
        if current is None:
            return AccountProjection.anonymous()
        return current

    def update_current_account(
        self, session: SessionBinder, payload: ProfileUpdateInput
    ) -> AccountProjection | None:
        """Apply a self-service profile update after re-authenticating the bound account.

        Returns ``None`` without applying anything when the re-authenticated
        account is not the one bound to the session.
        """
        current = self.get_current_account(session)
        with self._store.unit_of_work():
            account = self._store.find_by_email_and_hashed_password(
                current.email, self._hasher.hash(payload.current_password), active_only=True
            )
            if account is None:
                raise AccountNotFound()
            if account.account_id != current.account_id:
                logger.warning(
                    "profile update for session %s matched account %s; ignored",
                    current.account_id,
                    account.account_id,
                )
                return None

            account.first_name = payload.first_name
            account.last_name = payload.last_name
            if payload.new_password is not None:
                account.password_hash = self._hasher.hash(payload.new_password)
            saved = self._save(account)
        logger.info("account %s updated its profile", saved.account_id)
        LIFECYCLE_TRANSITIONS.labels(operation="update_current").inc()

        projection = AccountProjection.from_domain(saved)
        session.bind(saved.account_id, _authorities(saved.role), projection)
        self._notify(saved.email, "User Updated", NotificationTemplate.USER_UPDATED)
        return projection

    def start_password_reset(self, email: str) -> bool:
        """Issue a reset token for an ACTIVE account, superseding any pending token."""
        with self._store.unit_of_work():
            account = self._store.find_by_email(email, active_only=True)
            if account is None:
                raise AccountNotFound()
            secret, account.token_hash = generate_token(self._hasher.hash)
            saved = self._save(account)
        logger.info("password reset started for account %s", saved.account_id)
        LIFECYCLE_TRANSITIONS.labels(operation="start_reset").inc()

        try:
            self._notify(
                saved.email,
                "Password Reset Requested",
                NotificationTemplate.USER_RESET_REQUESTED,
                secret,
            )
        finally:
            secret.discard()
        return True

    def finish_password_reset(self, payload: PasswordResetInput) -> bool:
        """Set a new password for the account holding the reset token.

        A missing or mismatched confirmation is reported as ``False`` before any
        lookup takes place.
        """
        if not payload.new_password or payload.new_password != payload.confirmation:
            return False

        with self._store.unit_of_work():
            account = self._store.find_by_hashed_token(
                self._hasher.hash(payload.token), active_only=False
            )
            if account is None:
                raise AccountNotFound()
            account.password_hash = self._hasher.hash(payload.new_password)
            account.clear_token()
            saved = self._save(account)
        logger.info("password reset completed for account %s", saved.account_id)
        LIFECYCLE_TRANSITIONS.labels(operation="finish_reset").inc()

        self._notify(saved.email, "Password Reset Completed", NotificationTemplate.USER_RESET)
        return True

    def update_account(self, account_id: str, payload: AccountUpdateInput) -> AccountProjection:
        """Administrative full update, including activation and deactivation."""
        with self._store.unit_of_work():
            account = self._store.get_by_id(account_id)
            was_active = account.active

            account.username = payload.username
            account.first_name = payload.first_name
            account.last_name = payload.last_name
            account.email = payload.email
            password_changed = bool(payload.password)
            if password_changed:
                account.password_hash = self._hasher.hash(payload.password)
            account.security_level = SecurityLevel.resolve(payload.security_level)
            account.role = self._role_by_id(payload.role_id)
            account.set_active(payload.active)
            saved = self._save(account)
        logger.info(
            "account %s updated by administrator (status %s)", saved.account_id, saved.status.value
        )
        LIFECYCLE_TRANSITIONS.labels(operation="update_account").inc()

        if not was_active and saved.active:
            self._notify(saved.email, "User Activated", NotificationTemplate.USER_ACTIVATED)
        elif saved.active and password_changed:
            self._notify(saved.email, "Password Reset", NotificationTemplate.USER_RESET)
        elif saved.active:
            self._notify(saved.email, "User Updated", NotificationTemplate.USER_UPDATED)
        return AccountProjection.from_domain(saved)

    def resolve_principal(self, account_id: str) -> AccountProjection | None:
        """Reload a session's account; ``None`` once it is no longer ACTIVE."""
        account = self._store.find_by_id(account_id, active_only=True)
        if account is None or not account.active:
            return None
        return AccountProjection.from_domain(account)

    def get_account(self, account_id: str) -> AccountProjection:
        return AccountProjection.from_domain(self._store.get_by_id(account_id))

    def list_accounts(self) -> list[AccountProjection]:
        return [AccountProjection.from_domain(account) for account in self._store.list_accounts()]

    def find_by_role(self, role_id: int) -> list[AccountProjection]:
        return [AccountProjection.from_domain(account) for account in self._store.find_by_role(role_id)]

    def _email_qualifies(self, email: str) -> bool:
        """Return ``True`` when the address ends with a configured auto-approve suffix."""
        normalised = email.strip().lower()
        return any(
            normalised.endswith(suffix.strip().lower())
            for suffix in self._settings.registration_email_suffixes
            if suffix.strip()
        )

    def _role_by_name(self, name: str) -> Role:
        role = self._roles.find_by_name(name)
        if role is None:
            raise InvalidConfiguration(f"bad role name: {name}")
        return role

    def _role_by_id(self, role_id: int) -> Role:
        role = self._roles.find_by_id(role_id)
        if role is None:
            raise InvalidConfiguration(f"bad role id: {role_id}")
        return role

    def _save(self, account: Account) -> Account:
        try:
            return self._store.save(account)
        except UniquenessViolation as exc:
            raise DuplicateAccount(f"duplicate account: {account.username}") from exc

    def _notify(
        self,
        recipients: str | Iterable[str],
        subject: str,
        template: NotificationTemplate,
        payload: Any | None = None,
    ) -> None:
        """Dispatch a notification; failures are logged and counted, never raised."""
        try:
            self._dispatcher.send(
                recipients, f"{self._settings.portal_name} - {subject}", template.value, payload
            )
        except Exception as exc:
            NOTIFICATION_FAILURES.labels(template=template.value).inc()
            logger.warning("notification %s could not be dispatched: %s", template.value, exc)


def _same_name(stored: str | None, presented: str | None) -> bool:
    if stored is None or presented is None:
        return False
    return stored.casefold() == presented.casefold()


def _authorities(role: Role | None) -> frozenset[str]:
    return role.authorities() if role is not None else frozenset()
