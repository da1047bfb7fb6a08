"""
auth/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper. SqlUserStore is the repository for users,
roles and verification codes; _row_to_user / _row_to_challenge are the
mappers. It implements both identity.ports.UserStore and
identity.ports.RoleStore, so the same instance is injected twice.

Security:
  All queries use bound parameters. No f-strings in SQL.

Schema notes:
  users.email is UNIQUE; a violation surfaces as EmailAlreadyRegisteredError
  so a concurrent duplicate registration fails the same way as the
  pre-insert check. users.role references roles.name.

  verification_codes is keyed by user_id: at most one live challenge per
  user. Saving a code replaces the previous one inside one transaction.

  Timestamps are ISO 8601 UTC strings, as in the rest of the codebase.
  SQLite connections enable WAL and foreign key enforcement per connection.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
)
from sqlalchemy.engine import Connection, Engine, RootTransaction
from sqlalchemy.exc import IntegrityError

from identity.errors import EmailAlreadyRegisteredError
from identity.models import Role, User, UserStatus, VerificationChallenge

logger = logging.getLogger("catalog.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'catalog_identity.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("name", String(30), primary_key=True),
    Column("created_at", String(32), nullable=False),
)

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),  # UUID4 string
    Column("email", String(255), nullable=False, unique=True),
    Column("full_name", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("role", String(30), ForeignKey("roles.name"), nullable=False),
    Column("status", String(30), nullable=False, server_default=UserStatus.PENDING_VERIFICATION.value),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    CheckConstraint(
        "status IN ('pending_verification', 'active', 'blocked')",
        name="ck_users_status",
    ),
)

_verification_codes = Table(
    "verification_codes",
    _metadata,
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("code", String(16), nullable=False),
    Column("expires_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. Foreign keys are OFF by default in SQLite.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _insert_user(conn: Connection, user: User) -> User:
    """Insert user on conn (no commit) and return it with id and timestamps set."""
    now = _now_iso()
    user_id = str(uuid.uuid4())
    try:
        conn.execute(
            _users.insert().values(
                id=user_id,
                email=user.email,
                full_name=user.full_name,
                password_hash=user.password_hash,
                role=Role(user.role).value,
                status=UserStatus(user.status).value,
                is_verified=1 if user.is_verified else 0,
                created_at=now,
                updated_at=now,
            )
        )
    except IntegrityError as exc:
        if "email" in str(exc.orig).lower():
            raise EmailAlreadyRegisteredError(user.email) from exc
        raise
    return replace(user, id=user_id, created_at=now, updated_at=now)


def _replace_code(conn: Connection, user_id: str, code: str, expires_at: datetime) -> None:
    conn.execute(_verification_codes.delete().where(_verification_codes.c.user_id == user_id))
    conn.execute(
        _verification_codes.insert().values(
            user_id=user_id,
            code=code,
            expires_at=expires_at.astimezone(timezone.utc).isoformat(),
        )
    )


# ---------------------------------------------------------------------------
# Transaction scope
# ---------------------------------------------------------------------------


class SqlUserStoreTransaction:
    """Writes sharing one connection and one transaction. See SqlUserStore.begin()."""

    def __init__(self, conn: Connection, trans: RootTransaction) -> None:
        self._conn = conn
        self._trans = trans

    def create_user(self, user: User) -> User:
        return _insert_user(self._conn, user)

    def save_verification_code(self, user_id: str, code: str, expires_at: datetime) -> None:
        _replace_code(self._conn, user_id, code, expires_at)

    def commit(self) -> None:
        self._trans.commit()

    def rollback(self) -> None:
        if self._trans.is_active:
            self._trans.rollback()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SqlUserStore:
    """Repository for users, roles and verification codes.

    Usage:
        store = SqlUserStore("sqlite:///:memory:")
        store.ensure_role(Role.CLIENT)
        with store.begin() as tx:
            user = tx.create_user(User(email="a@b.c", full_name="A", role=Role.CLIENT, password_hash=h))
            tx.save_verification_code(user.id, "123456", expires_at)
            tx.commit()
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def begin(self) -> Iterator[SqlUserStoreTransaction]:
        """Yield a transaction scope. Anything not committed when the block exits is rolled back.

        This covers early returns, exceptions raised by the caller, and
        exceptions raised by the store itself.
        """
        with self.engine.connect() as conn:
            trans = conn.begin()
            try:
                yield SqlUserStoreTransaction(conn, trans)
            finally:
                if trans.is_active:
                    trans.rollback()

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a user outside any saga (admin seed). Raises EmailAlreadyRegisteredError."""
        with self.engine.connect() as conn:
            created = _insert_user(conn, user)
            conn.commit()
        return created

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def mark_verified(self, user_id: str) -> bool:
        """Set is_verified and promote pending_verification to active.

        A blocked user stays blocked. There is no method to clear
        is_verified: the flag is monotonic.
        """
        promoted_status = case(
            (_users.c.status == UserStatus.PENDING_VERIFICATION.value, UserStatus.ACTIVE.value),
            else_=_users.c.status,
        )
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(is_verified=1, status=promoted_status, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def set_status(self, user_id: str, status: UserStatus) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(status=UserStatus(status).value, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def update_profile(self, user_id: str, full_name: str) -> User | None:
        """Update profile fields and return the fresh record, or None if user_id is unknown."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(full_name=full_name, updated_at=_now_iso())
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_by_id(user_id)

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user and, by cascade, its verification code.

        Compensating action only -- the identity service never calls it.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    def save_verification_code(self, user_id: str, code: str, expires_at: datetime) -> None:
        """Store the user's challenge, replacing any existing one atomically."""
        with self.engine.connect() as conn:
            _replace_code(conn, user_id, code, expires_at)
            conn.commit()

    def get_verification_code(self, user_id: str) -> VerificationChallenge | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _verification_codes.select().where(_verification_codes.c.user_id == user_id)
            ).fetchone()
        return _row_to_challenge(row) if row is not None else None

    def delete_verification_code(self, user_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_verification_codes.delete().where(_verification_codes.c.user_id == user_id))
            conn.commit()

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def ensure_role(self, role: Role) -> None:
        """Create the role row if missing. Idempotent; safe under concurrent callers."""
        name = Role(role).value
        with self.engine.connect() as conn:
            exists = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
            if exists is not None:
                return
            try:
                conn.execute(_roles.insert().values(name=name, created_at=_now_iso()))
                conn.commit()
            except IntegrityError:
                # A concurrent caller inserted it first; the role exists either way.
                conn.rollback()

    def assign_role(self, user_id: str, role: Role) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(role=Role(role).value, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        full_name=row.full_name,
        password_hash=row.password_hash,
        role=Role(row.role),
        status=UserStatus(row.status),
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_challenge(row) -> VerificationChallenge:
    expires_at = datetime.fromisoformat(row.expires_at)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return VerificationChallenge(user_id=row.user_id, code=row.code, expires_at=expires_at)
