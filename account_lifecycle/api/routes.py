"""HTTP route definitions for the account lifecycle service."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, EmailStr, Field

from ..config import get_settings
from ..domain.account import AccountProjection
from ..domain.contracts import (
    AccountUpdateInput,
    PasswordResetInput,
    ProfileUpdateInput,
    RegistrationInput,
    VerificationInput,
)
from ..domain.errors import (
    AccountLifecycleError,
    AccountNotFound,
    DuplicateAccount,
    InvalidConfiguration,
)
from ..domain.service import AccountLifecycleManager
from ..security.rate_limiter import SlidingWindowRateLimiter
from ..security.redis_rate_limiter import RedisSlidingWindowRateLimiter
from ..security.revocations import InMemorySessionRevocations, RedisSessionRevocations
from ..security.sessions import CookieSessionBinder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/users")

ADMIN_AUTHORITY = "admin"


class PermissionResponse(BaseModel):
    permission_id: int
    name: str


class AccountResponse(BaseModel):
    """Serialised account projection; ``active`` mirrors ``status == ACTIVE``."""

    account_id: str | None
    username: str
    first_name: str
    last_name: str
    full_name: str
    email: str
    status: str
    active: bool
    security_level: str
    role_id: int | None = None
    role_name: str | None = None
    permissions: list[PermissionResponse] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    credentials_expired: bool = False

    @classmethod
    def from_domain(cls, projection: AccountProjection) -> "AccountResponse":
        """Build a response model from the domain projection."""
        return cls(
            account_id=projection.account_id,
            username=projection.username,
            first_name=projection.first_name,
            last_name=projection.last_name,
            full_name=projection.full_name,
            email=projection.email,
            status=projection.status,
            active=projection.active,
            security_level=projection.security_level,
            role_id=projection.role_id,
            role_name=projection.role_name,
            permissions=[
                PermissionResponse(permission_id=perm.permission_id, name=perm.name)
                for perm in projection.permissions
            ],
            created_at=projection.created_at,
            updated_at=projection.updated_at,
            credentials_expired=projection.credentials_expired,
        )


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr


class VerifyRequest(BaseModel):
    first_name: str
    last_name: str
    token: str


class SignInRequest(BaseModel):
    username: str
    password: str


class ProfileUpdateRequest(BaseModel):
    """Self-service update; ``password`` is the current password used to re-authenticate."""

    first_name: str
    last_name: str
    password: str
    new_password: str | None = None


class ResetStartRequest(BaseModel):
    email: EmailStr


class ResetFinishRequest(BaseModel):
    token: str
    password: str | None = None
    new_password: str | None = None


class AccountUpdateRequest(BaseModel):
    """Administrative update payload."""

    username: str = Field(..., min_length=1)
    first_name: str
    last_name: str
    email: EmailStr
    security_level: str
    role_id: int
    active: bool
    password: str | None = None


settings = get_settings()


def _redis_client():
    """Connect to the configured Redis, or return ``None`` to use in-process backends."""
    if settings.rate_limit_backend != "redis" or not settings.redis_url:
        return None
    try:
        import redis

        client = redis.from_url(settings.redis_url)
        client.ping()
    except Exception as exc:  # pragma: no cover - depends on a live redis
        logger.warning("redis unavailable at %s, falling back to in-memory: %s", settings.redis_url, exc)
        return None
    return client


def _build_rate_limiter(client=None) -> SlidingWindowRateLimiter | RedisSlidingWindowRateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if client is not None:
        logger.info("rate limiter configured for redis backend at %s", settings.redis_url)
        return RedisSlidingWindowRateLimiter(
            client,
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
            key_prefix="accounts",
        )

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        key_prefix="accounts",
    )


def _build_session_revocations(client=None) -> InMemorySessionRevocations | RedisSessionRevocations:
    if client is not None:
        return RedisSessionRevocations(client, key_prefix="accounts")
    return InMemorySessionRevocations()


_redis = _redis_client()
rate_limiter = _build_rate_limiter(_redis)
session_revocations = _build_session_revocations(_redis)


def get_service(request: Request) -> AccountLifecycleManager:
    """Resolve the `AccountLifecycleManager` stored on the FastAPI application state."""
    service: AccountLifecycleManager = request.app.state.account_service
    return service


def get_session(
    request: Request, service: AccountLifecycleManager = Depends(get_service)
) -> CookieSessionBinder:
    """Decode the caller's session cookie into a binder that reloads the account from the store."""
    return CookieSessionBinder(
        request.cookies.get(settings.session_cookie_name),
        load=service.resolve_principal,
        revocations=session_revocations,
    )


def require_admin(session: CookieSessionBinder = Depends(get_session)) -> CookieSessionBinder:
    if session.current_identity() is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not signed in")
    if ADMIN_AUTHORITY not in session.authorities:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    return session


@router.post("/register", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    service: AccountLifecycleManager = Depends(get_service),
) -> AccountResponse:
    """Start a registration; self-verification or admin review depends on policy."""
    logger.info("register(); username = %s", payload.username)
    try:
        projection = service.register(
            RegistrationInput(
                username=payload.username,
                password=payload.password,
                first_name=payload.first_name,
                last_name=payload.last_name,
                email=payload.email,
            )
        )
    except AccountLifecycleError as exc:
        raise _http_error(exc) from exc
    return AccountResponse.from_domain(projection)


@router.post("/verify", response_model=bool)
def verify(
    payload: VerifyRequest,
    service: AccountLifecycleManager = Depends(get_service),
) -> bool:
    """Complete self-verification with the emailed token."""
    logger.info("verify(); name = %s %s", payload.first_name, payload.last_name)
    try:
        return service.verify(
            VerificationInput(
                first_name=payload.first_name,
                last_name=payload.last_name,
                token=payload.token,
            )
        )
    except AccountLifecycleError as exc:
        raise _http_error(exc) from exc


@router.post("/signin", response_model=AccountResponse)
def sign_in(
    payload: SignInRequest,
    response: Response,
    service: AccountLifecycleManager = Depends(get_service),
    session: CookieSessionBinder = Depends(get_session),
) -> AccountResponse:
    logger.info("signin(); username = %s", payload.username)
    rate_key = f"signin:{payload.username.lower()}"
    if not rate_limiter.allow(rate_key):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="rate limited")
    try:
        projection = service.sign_in(payload.username, payload.password, session)
    except AccountLifecycleError as exc:
        raise _http_error(exc) from exc
    rate_limiter.reset(rate_key)
    _sync_cookie(response, session)
    return AccountResponse.from_domain(projection)


@router.api_route("/signout", methods=["GET", "POST"], response_model=bool)
def sign_out(
    response: Response,
    service: AccountLifecycleManager = Depends(get_service),
    session: CookieSessionBinder = Depends(get_session),
) -> bool:
    result = service.sign_out(session)
    _sync_cookie(response, session)
    return result


@router.get("/me", response_model=AccountResponse)
def get_me(
    service: AccountLifecycleManager = Depends(get_service),
    session: CookieSessionBinder = Depends(get_session),
) -> AccountResponse:
    """Return the signed-in account, or the anonymous projection."""
    return AccountResponse.from_domain(service.get_current_account(session))


@router.get("/me/health", response_model=bool)
def get_me_health(
    service: AccountLifecycleManager = Depends(get_service),
    session: CookieSessionBinder = Depends(get_session),
) -> bool:
    """Report whether the caller still holds an active session."""
    return service.get_current_account(session).active


@router.put("/me", response_model=AccountResponse)
def update_me(
    payload: ProfileUpdateRequest,
    response: Response,
    service: AccountLifecycleManager = Depends(get_service),
    session: CookieSessionBinder = Depends(get_session),
) -> AccountResponse:
    logger.info("update_me(); name = %s %s", payload.first_name, payload.last_name)
    try:
        projection = service.update_current_account(
            session,
            ProfileUpdateInput(
                first_name=payload.first_name,
                last_name=payload.last_name,
                current_password=payload.password,
                new_password=payload.new_password,
            ),
        )
    except AccountLifecycleError as exc:
        raise _http_error(exc) from exc
    if projection is None:
        raise _http_error(AccountNotFound())
    _sync_cookie(response, session)
    return AccountResponse.from_domain(projection)


@router.post("/reset/start", response_model=bool)
def start_reset(
    payload: ResetStartRequest,
    service: AccountLifecycleManager = Depends(get_service),
) -> bool:
    logger.info("start_reset();")
    if not rate_limiter.allow(f"reset:{payload.email.lower()}"):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="rate limited")
    try:
        return service.start_password_reset(payload.email)
    except AccountLifecycleError as exc:
        raise _http_error(exc) from exc


@router.post("/reset/finish", response_model=bool)
def finish_reset(
    payload: ResetFinishRequest,
    service: AccountLifecycleManager = Depends(get_service),
) -> bool:
    """Complete a reset; ``false`` signals that the two passwords differ."""
    logger.info("finish_reset();")
    try:
        return service.finish_password_reset(
            PasswordResetInput(
                token=payload.token,
                new_password=payload.password,
                confirmation=payload.new_password,
            )
        )
    except AccountLifecycleError as exc:
        raise _http_error(exc) from exc


@router.get("", response_model=list[AccountResponse])
def list_accounts(
    service: AccountLifecycleManager = Depends(get_service),
    _: CookieSessionBinder = Depends(require_admin),
) -> list[AccountResponse]:
    return [AccountResponse.from_domain(projection) for projection in service.list_accounts()]


@router.get("/by-role/{role_id}", response_model=list[AccountResponse])
def list_accounts_by_role(
    role_id: int,
    service: AccountLifecycleManager = Depends(get_service),
    _: CookieSessionBinder = Depends(require_admin),
) -> list[AccountResponse]:
    return [AccountResponse.from_domain(projection) for projection in service.find_by_role(role_id)]


@router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: str,
    service: AccountLifecycleManager = Depends(get_service),
    _: CookieSessionBinder = Depends(require_admin),
) -> AccountResponse:
    try:
        return AccountResponse.from_domain(service.get_account(account_id))
    except AccountLifecycleError as exc:
        raise _http_error(exc) from exc


@router.put("/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: str,
    payload: AccountUpdateRequest,
    service: AccountLifecycleManager = Depends(get_service),
    _: CookieSessionBinder = Depends(require_admin),
) -> AccountResponse:
    """Administrative update, including activation and deactivation."""
    logger.info("update_account(); account_id = %s", account_id)
    try:
        projection = service.update_account(
            account_id,
            AccountUpdateInput(
                username=payload.username,
                first_name=payload.first_name,
                last_name=payload.last_name,
                email=payload.email,
                security_level=payload.security_level,
                role_id=payload.role_id,
                active=payload.active,
                password=payload.password,
            ),
        )
    except AccountLifecycleError as exc:
        raise _http_error(exc) from exc
    return AccountResponse.from_domain(projection)


def _sync_cookie(response: Response, session: CookieSessionBinder) -> None:
    """Write the binder's state back to the session cookie."""
    if not session.changed:
        return
    if session.token is None:
        response.delete_cookie(settings.session_cookie_name)
        return
    response.set_cookie(
        settings.session_cookie_name,
        session.token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


_STATUS_BY_ERROR: dict[type[AccountLifecycleError], int] = {
    AccountNotFound: status.HTTP_404_NOT_FOUND,
    DuplicateAccount: status.HTTP_409_CONFLICT,
    InvalidConfiguration: status.HTTP_400_BAD_REQUEST,
}


def _http_error(exc: AccountLifecycleError) -> HTTPException:
    status_code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=status_code, detail=str(exc))
