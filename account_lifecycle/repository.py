"""Database repositories for accounts and roles."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator

from psycopg import Connection
from psycopg.errors import UniqueViolation
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account, AccountStatus, Permission, Role, SecurityLevel
from .domain.errors import AccountNotFound, UniquenessViolation

# Connection checked out by the innermost open unit of work, shared by every
# repository call made inside it.
_active_connection: ContextVar[Connection | None] = ContextVar(
    "account_store_connection", default=None
)

_ACCOUNT_COLUMNS = """
    account_id, username, password_hash, first_name, last_name, email,
    status, security_level, token_hash, role_id, created_at, updated_at
"""


class _PooledRepository:
    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        """Run the enclosed calls in one transaction, committed on clean exit."""
        if _active_connection.get() is not None:
            yield
            return
        with self._pool.connection() as conn:
            token = _active_connection.set(conn)
            try:
                yield
            finally:
                _active_connection.reset(token)

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        conn = _active_connection.get()
        if conn is not None:
            yield conn
            return
        with self._pool.connection() as conn:
            yield conn


class RoleRepository(_PooledRepository):
    """Read-only role lookups with their ordered permission lists."""

    def find_by_name(self, name: str) -> Role | None:
        return self._find_one("name = %s", (name,))

    def find_by_id(self, role_id: int) -> Role | None:
        return self._find_one("role_id = %s", (role_id,))

    def _find_one(self, where_sql: str, params: tuple[Any, ...]) -> Role | None:
        with self._connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT role_id, name FROM roles WHERE {where_sql}", params)
                row = cur.fetchone()
                if not row:
                    return None
                cur.execute(
                    """
                    SELECT p.permission_id, p.name
                    FROM role_permissions rp
                    JOIN permissions p ON p.permission_id = rp.permission_id
                    WHERE rp.role_id = %s
                    ORDER BY p.permission_id
                    """,
                    (row[0],),
                )
                permissions = tuple(Permission(*perm) for perm in cur.fetchall())
        return Role(role_id=row[0], name=row[1], permissions=permissions)


class AccountRepository(_PooledRepository):
    """Postgres-backed account persistence.

    Username, email and token hash carry unique constraints; a rejected write
    surfaces as :class:`UniquenessViolation`.
    """

    def __init__(self, pool: ConnectionPool, roles: RoleRepository) -> None:
        super().__init__(pool)
        self._roles = roles

    def find_by_username_and_hashed_password(
        self, username: str, hashed_password: str, active_only: bool = True
    ) -> Account | None:
        return self._find_one(
            "lower(username) = lower(%s) AND password_hash = %s",
            (username, hashed_password),
            active_only,
        )

    def find_by_email_and_hashed_password(
        self, email: str, hashed_password: str, active_only: bool = True
    ) -> Account | None:
        return self._find_one(
            "lower(email) = lower(%s) AND password_hash = %s",
            (email, hashed_password),
            active_only,
        )

    def find_by_username(self, username: str, active_only: bool = True) -> Account | None:
        return self._find_one("lower(username) = lower(%s)", (username,), active_only)

    def find_by_email(self, email: str, active_only: bool = True) -> Account | None:
        return self._find_one("lower(email) = lower(%s)", (email,), active_only)

    def find_by_hashed_token(self, token_hash: str, active_only: bool = True) -> Account | None:
        return self._find_one("token_hash = %s", (token_hash,), active_only)

    def find_by_id(self, account_id: str, active_only: bool = True) -> Account | None:
        return self._find_one("account_id = %s", (account_id,), active_only)

    def find_by_role(self, role_id: int) -> list[Account]:
        return self._find_many("role_id = %s", (role_id,))

    def list_accounts(self) -> list[Account]:
        return self._find_many("TRUE", ())

    def get_by_id(self, account_id: str) -> Account:
        """Fetch an account by identifier or raise ``AccountNotFound``."""
        account = self._find_one("account_id = %s", (account_id,), active_only=False)
        if account is None:
            raise AccountNotFound()
        return account

    def save(self, account: Account) -> Account:
        """Insert a new account or update an existing one, returning the stored state."""
        now = datetime.now(timezone.utc)
        role_id = account.role.role_id if account.role else None
        try:
            with self._connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    if account.account_id is None:
                        cur.execute(
                            f"""
                            INSERT INTO accounts (
                                account_id, username, password_hash, first_name, last_name, email,
                                status, security_level, token_hash, role_id, created_at, updated_at
                            )
                            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                            RETURNING {_ACCOUNT_COLUMNS}
                            """,
                            (
                                str(uuid.uuid4()),
                                account.username,
                                account.password_hash,
                                account.first_name,
                                account.last_name,
                                account.email,
                                account.status.value,
                                account.security_level.value,
                                account.token_hash,
                                role_id,
                                now,
                                now,
                            ),
                        )
                    else:
                        cur.execute(
                            f"""
                            UPDATE accounts
                            SET username = %s, password_hash = %s, first_name = %s, last_name = %s,
                                email = %s, status = %s, security_level = %s, token_hash = %s,
                                role_id = %s, updated_at = %s
                            WHERE account_id = %s
                            RETURNING {_ACCOUNT_COLUMNS}
                            """,
                            (
                                account.username,
                                account.password_hash,
                                account.first_name,
                                account.last_name,
                                account.email,
                                account.status.value,
                                account.security_level.value,
                                account.token_hash,
                                role_id,
                                now,
                                account.account_id,
                            ),
                        )
                    row = cur.fetchone()
        except UniqueViolation as exc:
            raise UniquenessViolation(str(exc)) from exc
        if not row:
            raise AccountNotFound()
        return self._map_record(row)

    def _find_one(
        self, where_sql: str, params: tuple[Any, ...], active_only: bool
    ) -> Account | None:
        if active_only:
            where_sql = f"{where_sql} AND status = '{AccountStatus.ACTIVE.value}'"
        # Rows read inside a unit of work stay locked until it commits.
        lock_sql = " FOR UPDATE" if _active_connection.get() is not None else ""
        with self._connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE {where_sql}{lock_sql}", params
                )
                row = cur.fetchone()
                if not row:
                    return None
        return self._map_record(row)

    def _find_many(self, where_sql: str, params: tuple[Any, ...]) -> list[Account]:
        with self._connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_ACCOUNT_COLUMNS}
                    FROM accounts
                    WHERE {where_sql}
                    ORDER BY created_at DESC, account_id DESC
                    """,
                    params,
                )
                rows = cur.fetchall()
        return [self._map_record(row) for row in rows]

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        role = self._roles.find_by_id(row[9]) if row[9] is not None else None
        return Account(
            account_id=str(row[0]),
            username=row[1],
            password_hash=row[2],
            first_name=row[3],
            last_name=row[4],
            email=row[5],
            status=AccountStatus(row[6]),
            security_level=SecurityLevel(row[7]),
            token_hash=row[8],
            role=role,
            created_at=row[10],
            updated_at=row[11],
        )
