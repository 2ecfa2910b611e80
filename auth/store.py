"""
auth/store.py -- SQLAlchemy Core persistence layer for user credentials.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. The session manager
never touches SQL directly -- it depends on the CredentialStore protocol, which
UserStore satisfies structurally.

Security:
  All queries use bound parameters. No f-strings in SQL.

  swap_refresh_token() is the rotation primitive. It is ONE conditional UPDATE
  (WHERE id = :id AND refresh_token = :expected), so the equality check and
  the write are atomic per row. Two concurrent refreshes presenting the same
  token cannot both match: the database applies the writes one after the
  other, and the second UPDATE finds the row already changed (rowcount 0).
  Never replace this with get_by_id() + compare + update_refresh_token().

Errors:
  Any SQLAlchemyError raised while talking to the database is re-raised as
  StoreUnavailableError (chained), the only retryable auth failure. Duplicate
  username/email on insert is reported as ErrorKind.USER_EXISTS instead.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, or_, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import SingletonThreadPool

from auth.errors import AuthError, ErrorKind, StoreUnavailableError
from auth.models import User
from auth.passwords import verify_password
from core.config import get_settings

logger = logging.getLogger("sessiongate.store")

# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    """What the session manager needs from a user record store."""

    def find_by_identifier(self, identifier: str) -> User | None: ...

    def get_by_id(self, user_id: int) -> User | None: ...

    def verify_password(self, user: User, plaintext: str) -> bool: ...

    def update_refresh_token(self, user_id: int, token: str | None) -> bool: ...

    def swap_refresh_token(self, user_id: int, expected: str, new: str) -> bool: ...

    def update_password_hash(self, user_id: int, new_hash: str) -> bool: ...

    def exists(self, username: str, email: str) -> bool: ...

    def create_user(self, user: User) -> int: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),  # lower-cased
    Column("email", String(320), nullable=False, unique=True),  # lower-cased
    Column("full_name", String(255), nullable=False, server_default=""),
    Column("hashed_password", Text, nullable=False),
    Column("refresh_token", Text),  # NULL = no active session
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _guarded(method):
    """Re-raise database failures as StoreUnavailableError."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except AuthError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Credential store call %s failed", method.__name__)
            raise StoreUnavailableError(message=f"{method.__name__}: {exc.__class__.__name__}") from exc

    return wrapper


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        uid = store.create_user(User(username="alice", email="a@x.io", hashed_password=hash_password("p")))
        user = store.find_by_identifier("alice")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        is_sqlite = db_url.startswith("sqlite")
        in_memory = is_sqlite and (":memory:" in db_url or "mode=memory" in db_url)
        engine_kwargs: dict = {}
        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        if in_memory:
            # One connection per thread keeps an in-memory database alive
            engine_kwargs["poolclass"] = SingletonThreadPool
        self.engine: Engine = create_engine(db_url, **engine_kwargs)
        if is_sqlite and not in_memory:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @_guarded
    def find_by_identifier(self, identifier: str) -> User | None:
        """Look up a user whose username OR email equals identifier (case-insensitive)."""
        ident = identifier.strip().lower()
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select()
                .where(or_(_users.c.username == ident, _users.c.email == ident))
                .order_by(_users.c.id)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    @_guarded
    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    @_guarded
    def exists(self, username: str, email: str) -> bool:
        """Return True if the username or the email is already taken.

        Both candidates are checked against both columns. Login resolves an
        identifier against username OR email, so a new username equal to an
        existing email (or the reverse) would shadow one of the two accounts.
        """
        candidates = [username.strip().lower(), email.strip().lower()]
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_users.c.id)
                .where(or_(_users.c.username.in_(candidates), _users.c.email.in_(candidates)))
                .limit(1)
            ).fetchone()
        return row is not None

    def verify_password(self, user: User, plaintext: str) -> bool:
        """Compare plaintext against the user's stored bcrypt hash."""
        if not user.hashed_password:
            return False
        return verify_password(plaintext, user.hashed_password)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @_guarded
    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises AuthError(USER_EXISTS) if the username or email is taken. The
        UNIQUE constraints are the final word for same-column duplicates -- a
        concurrent registration that slipped past exists() still lands here.
        Cross-column collisions are caught by exists() only.
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=user.username.lower(),
                        email=user.email.lower(),
                        full_name=user.full_name,
                        hashed_password=user.hashed_password,
                        refresh_token=None,
                        created_at=_now_iso(),
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise AuthError(ErrorKind.USER_EXISTS, f"duplicate user {user.username!r}") from exc

    @_guarded
    def update_refresh_token(self, user_id: int, token: str | None) -> bool:
        """Overwrite the stored refresh token unconditionally (None clears it).

        Used by login (new session replaces any old one) and logout.
        Returns True if a row was updated, False if user_id was not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(refresh_token=token))
            conn.commit()
        return result.rowcount > 0

    @_guarded
    def swap_refresh_token(self, user_id: int, expected: str, new: str) -> bool:
        """Replace the stored refresh token only if it still equals expected.

        Returns True if this call performed the rotation, False if the stored
        value was something else (superseded, cleared, or user missing).
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.refresh_token == expected))
                .values(refresh_token=new)
            )
            conn.commit()
        return result.rowcount == 1

    @_guarded
    def update_password_hash(self, user_id: int, new_hash: str) -> bool:
        """Replace the stored bcrypt hash. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(hashed_password=new_hash))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Credential store health check failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        full_name=row.full_name or "",
        hashed_password=row.hashed_password,
        refresh_token=row.refresh_token,
        created_at=row.created_at,
    )
