"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Route and dependency
code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  The password column is only selected by the lookups used for login
  (find_by_username) and migration (find_unhashed). list_users() projects it
  out entirely.

Lifecycle:
  The store is constructed and initialized by the application lifespan (the
  composition root) and disposed at shutdown. There is no module-level pool.
  Construction never touches the database; initialize() does, and the
  lifespan bounds it with a timeout.

Backends:
  SQLite (default, file or shared-memory URI) and MySQL through
  mysql+pymysql://. The schema is the portable subset of both.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, create_engine, event, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError

from auth.errors import BackendUnavailableError, DuplicateUsernameError, ValidationError
from auth.models import ROLE_USER, ROLES, USERNAME_PATTERN, User
from auth.passwords import looks_like_hash

logger = logging.getLogger("pkm.store")

_USERNAME_RE = re.compile(USERNAME_PATTERN)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("password", String(255), nullable=False),  # bcrypt hash
    Column("role", String(20), nullable=False, server_default=ROLE_USER),
    Column("createdAt", DateTime, nullable=False),
)

# list_users() projection: everything except the password column.
_public_columns = (_users.c.id, _users.c.username, _users.c.role, _users.c.createdAt)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///pkm_auth.db")
        store.initialize()
        store.create("admin", hash_password("secret"), role="admin")
        user = store.find_by_username("admin")
        store.close()
    """

    def __init__(self, db_url: str, connect_timeout: float | None = None) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        elif db_url.startswith("mysql") and connect_timeout:
            connect_args["connect_timeout"] = max(1, int(connect_timeout))
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """Yield a connection; driver connectivity failures become BackendUnavailableError."""
        try:
            with self.engine.connect() as conn:
                yield conn
        except (OperationalError, InterfaceError) as exc:
            logger.error("Credential store error: %s", exc.orig if exc.orig is not None else exc)
            raise BackendUnavailableError(detail=str(exc.orig or exc)) from exc

    def initialize(self) -> None:
        """Check connectivity and create the users table if missing. Idempotent."""
        with self._connect() as conn:
            conn.execute(text("SELECT 1"))
        try:
            _metadata.create_all(self.engine)
        except (OperationalError, InterfaceError) as exc:
            raise BackendUnavailableError(detail=str(exc.orig or exc)) from exc
        logger.info("Credential store ready (%s)", self.engine.url.get_backend_name())

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        # MySQL's default collation is case-insensitive, so the final
        # comparison happens in Python.
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        if row is None or row.username != username:
            return None
        return _row_to_user(row)

    def find_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by id. hashed_password is None on every result."""
        with self._connect() as conn:
            rows = conn.execute(select(*_public_columns).order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def find_unhashed(self) -> list[User]:
        """Return users whose password column is not a bcrypt hash.

        Input to the one-time `migrate-passwords` command. Never called from
        the request path.
        """
        with self._connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows if not looks_like_hash(r.password)]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, username: str, password_hash: str, role: str = ROLE_USER) -> User:
        """Insert a new user and return it with its assigned id.

        Raises ValidationError for a malformed username, role, or hash.
        Raises DuplicateUsernameError if the username is taken. The UNIQUE
        constraint is the arbiter, so of two concurrent creates with the same
        username exactly one succeeds.
        """
        _validate_username(username)
        _validate_role(role)
        if not looks_like_hash(password_hash):
            raise ValidationError("Password must be stored as a bcrypt hash.")

        created_at = _now()
        try:
            with self._connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=username,
                        password=password_hash,
                        role=role,
                        createdAt=created_at,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateUsernameError() from exc
        user_id = result.inserted_primary_key[0]
        logger.info("Created user id=%s role=%s", user_id, role)
        return User(id=user_id, username=username, role=role, hashed_password=password_hash, created_at=_iso(created_at))

    def update(self, user_id: int, password_hash: str | None = None, role: str | None = None) -> User | None:
        """Apply the provided fields to an existing user.

        Returns the updated User, or None if user_id does not exist. With no
        fields provided this is a plain lookup.
        """
        values: dict = {}
        if password_hash is not None:
            if not looks_like_hash(password_hash):
                raise ValidationError("Password must be stored as a bcrypt hash.")
            values["password"] = password_hash
        if role is not None:
            _validate_role(role)
            values["role"] = role

        with self._connect() as conn:
            if values:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
                conn.commit()
                if result.rowcount == 0:
                    return None
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        if row is None:
            return None
        if values:
            logger.info("Updated user id=%s fields=%s", user_id, sorted(values))
        return _row_to_user(row)

    def delete(self, user_id: int) -> dict | None:
        """Permanently delete a user. Returns {"id", "username"} or None if not found."""
        with self._connect() as conn:
            row = conn.execute(select(_users.c.id, _users.c.username).where(_users.c.id == user_id)).fetchone()
            if row is None:
                return None
            conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        logger.info("Deleted user id=%s", user_id)
        return {"id": row.id, "username": row.username}

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _validate_username(username: object) -> None:
    if not isinstance(username, str) or not _USERNAME_RE.fullmatch(username):
        raise ValidationError(
            "Username must be 3-50 characters: letters, numbers, underscore, and hyphen."
        )


def _validate_role(role: object) -> None:
    if role not in ROLES:
        raise ValidationError('Invalid role. Must be "user" or "admin".')


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _iso(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _row_to_user(row) -> User:
    # Projected rows (list_users) carry no password attribute.
    return User(
        id=row.id,
        username=row.username,
        role=row.role,
        hashed_password=getattr(row, "password", None),
        created_at=_iso(row.createdAt),
    )
