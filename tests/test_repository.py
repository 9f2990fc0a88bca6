"""SQL-level behaviour of the Postgres repositories, checked against a recording pool."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone

import pytest
from psycopg.errors import UniqueViolation

from account_lifecycle.domain.account import Account, AccountStatus, SecurityLevel
from account_lifecycle.domain.errors import UniquenessViolation
from account_lifecycle.repository import AccountRepository
from account_lifecycle.schema import SCHEMA_SQL, ensure_schema

from conftest import MEMBER_ROLE, FakeRoleResolver

NOW = datetime(2026, 1, 5, tzinfo=timezone.utc)


def _row(account_id="acc-1", status="PENDING", token_hash="digest"):
    return (
        account_id, "ada", "pw-hash", "Ada", "Lovelace", "ada@example.com",
        status, "PUBLIC", token_hash, MEMBER_ROLE.role_id, NOW, NOW,
    )


class RecordingCursor:
    def __init__(self, conn: "RecordingConnection") -> None:
        self._conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def execute(self, sql, params=None):
        self._conn.statements.append((" ".join(sql.split()), params))
        if self._conn.error is not None:
            raise self._conn.error

    def fetchone(self):
        return self._conn.rows.pop(0) if self._conn.rows else None

    def fetchall(self):
        rows, self._conn.rows = self._conn.rows, []
        return rows


class RecordingConnection:
    def __init__(self) -> None:
        self.statements: list[tuple[str, tuple | None]] = []
        self.rows: list[tuple] = []
        self.error: Exception | None = None

    def cursor(self, row_factory=None):
        return RecordingCursor(self)


class RecordingPool:
    def __init__(self) -> None:
        self.conn = RecordingConnection()
        self.checkouts = 0

    @contextmanager
    def connection(self):
        self.checkouts += 1
        yield self.conn


@pytest.fixture
def pool() -> RecordingPool:
    return RecordingPool()


@pytest.fixture
def repository(pool) -> AccountRepository:
    return AccountRepository(pool, FakeRoleResolver())


def test_lookup_outside_unit_of_work_takes_no_lock(pool, repository):
    pool.conn.rows = [_row()]

    account = repository.find_by_hashed_token("digest", active_only=False)

    assert account.account_id == "acc-1"
    assert account.role == MEMBER_ROLE
    (sql, params), = pool.conn.statements
    assert "FOR UPDATE" not in sql
    assert params == ("digest",)


def test_token_lookup_inside_unit_of_work_locks_the_row(pool, repository):
    pool.conn.rows = [_row(), _row(status="ACTIVE", token_hash=None)]

    with repository.unit_of_work():
        account = repository.find_by_hashed_token("digest", active_only=False)
        account.status = AccountStatus.ACTIVE
        account.token_hash = None
        saved = repository.save(account)

    select_sql, update_sql = (sql for sql, _ in pool.conn.statements)
    assert select_sql.startswith("SELECT") and select_sql.endswith("WHERE token_hash = %s FOR UPDATE")
    assert update_sql.startswith("UPDATE accounts")
    assert saved.status is AccountStatus.ACTIVE
    assert pool.checkouts == 1


def test_active_only_lookup_filters_on_status(pool, repository):
    with repository.unit_of_work():
        assert repository.find_by_id("acc-1") is None

    (sql, params), = pool.conn.statements
    assert sql.endswith("WHERE account_id = %s AND status = 'ACTIVE' FOR UPDATE")
    assert params == ("acc-1",)


def test_username_lookup_ignores_case(pool, repository):
    repository.find_by_username("ADA", active_only=False)
    (sql, params), = pool.conn.statements
    assert "lower(username) = lower(%s)" in sql
    assert params == ("ADA",)


def test_unique_violation_becomes_uniqueness_violation(pool, repository):
    pool.conn.error = UniqueViolation("duplicate key value violates unique constraint")
    account = Account(
        account_id=None,
        username="ada",
        password_hash="pw-hash",
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
        role=MEMBER_ROLE,
        status=AccountStatus.PENDING,
        security_level=SecurityLevel.PUBLIC,
    )

    with pytest.raises(UniquenessViolation):
        repository.save(account)


def test_schema_enforces_case_insensitive_uniqueness():
    assert "ON accounts (lower(username))" in SCHEMA_SQL
    assert "ON accounts (lower(email))" in SCHEMA_SQL
    assert "token_hash TEXT UNIQUE" in SCHEMA_SQL
    assert "'PENDING', 'ACTIVE', 'DISABLED'" in SCHEMA_SQL


def test_ensure_schema_creates_tables_and_seeds_roles(pool):
    ensure_schema(pool, role_names=("Member", "Browser", "Member", ""))

    statements = pool.conn.statements
    assert statements[0] == (" ".join(SCHEMA_SQL.split()), None)
    inserts = [params for sql, params in statements[1:]]
    assert inserts == [("Browser",), ("Member",)]
    assert all("ON CONFLICT (name) DO NOTHING" in sql for sql, _ in statements[1:])
