"""FastAPI application wiring for the account lifecycle service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import router as users_router
from .config import get_settings
from .domain.service import AccountLifecycleManager
from .notifications import build_dispatcher
from .repository import AccountRepository, RoleRepository
from .schema import ensure_schema
from .security.hashing import HmacCredentialHasher

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, lifecycle manager) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    if settings.database_auto_migrate:
        ensure_schema(
            pool,
            role_names=(settings.registration_initial_role, settings.default_role),
        )
    roles = RoleRepository(pool)
    app.state.pool = pool
    app.state.account_service = AccountLifecycleManager(
        store=AccountRepository(pool, roles),
        roles=roles,
        hasher=HmacCredentialHasher(settings.credential_hash_secret),
        dispatcher=build_dispatcher(settings),
        settings=settings,
    )
    try:
        yield
    finally:
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# CORS for local frontend dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(users_router)
