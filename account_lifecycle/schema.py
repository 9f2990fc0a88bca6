"""Postgres schema for accounts and roles, plus the bootstrap that creates it."""

from __future__ import annotations

import logging
from typing import Iterable

from psycopg_pool import ConnectionPool

from .domain.account import AccountStatus, SecurityLevel

logger = logging.getLogger(__name__)


def _quoted(values: Iterable[str]) -> str:
    return ", ".join(f"'{value}'" for value in values)


# Usernames and emails are unique regardless of case, matching the
# lower(...) lookups in AccountRepository.
SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS roles (
    role_id SERIAL PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS permissions (
    permission_id SERIAL PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS role_permissions (
    role_id INTEGER NOT NULL REFERENCES roles (role_id) ON DELETE CASCADE,
    permission_id INTEGER NOT NULL REFERENCES permissions (permission_id) ON DELETE CASCADE,
    PRIMARY KEY (role_id, permission_id)
);

CREATE TABLE IF NOT EXISTS accounts (
    account_id TEXT PRIMARY KEY,
    username TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    email TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ({_quoted(s.value for s in AccountStatus)})),
    security_level TEXT NOT NULL CHECK (security_level IN ({_quoted(l.value for l in SecurityLevel)})),
    token_hash TEXT UNIQUE,
    role_id INTEGER REFERENCES roles (role_id),
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS accounts_username_lower_key ON accounts (lower(username));
CREATE UNIQUE INDEX IF NOT EXISTS accounts_email_lower_key ON accounts (lower(email));
CREATE INDEX IF NOT EXISTS accounts_role_id_idx ON accounts (role_id);
"""


def ensure_schema(pool: ConnectionPool, role_names: Iterable[str] = ()) -> None:
    """Create any missing tables and indexes, then make sure ``role_names`` exist.

    Safe to run on every start; existing rows are left untouched.
    """
    names = sorted({name for name in role_names if name})
    with pool.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)
            for name in names:
                cur.execute(
                    "INSERT INTO roles (name) VALUES (%s) ON CONFLICT (name) DO NOTHING",
                    (name,),
                )
    logger.info("account schema ensured; roles seeded: %s", ", ".join(names) or "none")
