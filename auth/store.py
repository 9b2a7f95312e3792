"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and SessionStore are the repositories; _row_to_user / _row_to_session
are the mappers. The session manager and route code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  auth_sessions.refresh_token is UNIQUE. A refresh token is written exactly
  once, so at most one row -- and therefore at most one active session -- can
  ever exist per token value.

  SessionStore.mark_superseded() is a conditional UPDATE (... WHERE id = :id
  AND deleted = 0) whose rowcount tells the caller whether *it* retired the
  session. Two requests racing on the same refresh token both reach the UPDATE;
  the database serializes them and exactly one sees rowcount == 1. This is the
  linearization point of token rotation -- see auth/sessions.py.

  Expiry is NOT filtered here. find_active_by_token() excludes deleted rows
  only; comparing expires_at with the clock is the session manager's job, so
  the expiry policy lives in one place.

Timestamps are stored as ISO 8601 UTC strings and mapped back to aware
datetimes (core/clock.py).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import AuthSession, User
from core.clock import Clock, from_iso, to_iso, utc_now

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
    Column("deleted", Integer, nullable=False, server_default="0"),
)

_auth_sessions = Table(
    "auth_sessions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("refresh_token", Text, nullable=False, unique=True),
    Column("user_id", String(36), nullable=False),
    Column("expires_at", String(40), nullable=False),
    Column("deleted", Integer, nullable=False, server_default="0"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
    # No FOREIGN KEY to users: the user store is a separate collaborator and
    # may live in another database.
)

Index("ix_auth_sessions_user_id", _auth_sessions.c.user_id)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and a busy timeout on every SQLite connection.

    WAL lets readers proceed while a writer holds the lock. The busy timeout
    makes a second writer wait for the first instead of failing immediately
    with "database is locked" -- concurrent rotations then serialize on the
    conditional UPDATE as intended. Set per-connection because SQLite PRAGMAs
    are not inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA busy_timeout=5000")


def _make_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    _metadata.create_all(engine)
    return engine


def _normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create_user(User(email="a@x.com", password_hash=digest))
        store.get_by_email("A@x.com")   # emails are case-insensitive
        store.close()
    """

    def __init__(self, db_url: str, clock: Clock = utc_now) -> None:
        self.engine: Engine = _make_engine(db_url)
        self.clock = clock

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and timestamps filled in.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers should treat that as a concurrent registration of the same
        address.
        """
        now = self.clock()
        created = User(
            id=str(uuid.uuid4()),
            email=_normalize_email(user.email),
            password_hash=user.password_hash,
            created_at=now,
            updated_at=now,
            deleted=False,
        )
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=created.id,
                    email=created.email,
                    password_hash=created.password_hash,
                    created_at=to_iso(now),
                    updated_at=to_iso(now),
                    deleted=0,
                )
            )
            conn.commit()
        return created

    def get_by_email(self, email: str) -> User | None:
        """Look up a non-deleted user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.email == _normalize_email(email)) & (_users.c.deleted == 0))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a non-deleted user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.id == user_id) & (_users.c.deleted == 0))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Refresh sessions
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for AuthSession records (one row per issued refresh token).

    Usage:
        sessions = SessionStore("sqlite:///:memory:")
        s = sessions.create(refresh_token, user_id, expires_at)
        sessions.find_active_by_token(refresh_token)   # -> s
        sessions.mark_superseded(s)                    # -> True
        sessions.find_active_by_token(refresh_token)   # -> None
    """

    def __init__(self, db_url: str, clock: Clock = utc_now) -> None:
        self.engine: Engine = _make_engine(db_url)
        self.clock = clock

    def create(self, refresh_token: str, user_id: str, expires_at: datetime) -> AuthSession:
        """Persist a new active session and return it.

        Raises sqlalchemy.exc.IntegrityError if refresh_token was ever stored
        before (UNIQUE constraint).
        """
        now = self.clock()
        session = AuthSession(
            id=str(uuid.uuid4()),
            refresh_token=refresh_token,
            user_id=user_id,
            expires_at=expires_at,
            deleted=False,
            created_at=now,
            updated_at=now,
        )
        with self.engine.connect() as conn:
            conn.execute(
                _auth_sessions.insert().values(
                    id=session.id,
                    refresh_token=refresh_token,
                    user_id=user_id,
                    expires_at=to_iso(expires_at),
                    deleted=0,
                    created_at=to_iso(now),
                    updated_at=to_iso(now),
                )
            )
            conn.commit()
        return session

    def find_active_by_token(self, refresh_token: str) -> AuthSession | None:
        """Return the non-deleted session for refresh_token, or None.

        Does not look at expires_at -- the caller owns the expiry check.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _auth_sessions.select().where(
                    (_auth_sessions.c.refresh_token == refresh_token) & (_auth_sessions.c.deleted == 0)
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def get(self, session_id: str) -> AuthSession | None:
        """Look up a session by primary key regardless of state."""
        with self.engine.connect() as conn:
            row = conn.execute(_auth_sessions.select().where(_auth_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def mark_superseded(self, session: AuthSession) -> bool:
        """Soft-delete session. Returns True only if this call flipped it.

        False means another caller already retired the session (or it never
        existed). On True, session.deleted and session.updated_at are updated
        in place to match the stored row.
        """
        now = self.clock()
        with self.engine.connect() as conn:
            result = conn.execute(
                _auth_sessions.update()
                .where((_auth_sessions.c.id == session.id) & (_auth_sessions.c.deleted == 0))
                .values(deleted=1, updated_at=to_iso(now))
            )
            conn.commit()
        if result.rowcount != 1:
            return False
        session.deleted = True
        session.updated_at = now
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
        deleted=bool(row.deleted),
    )


def _row_to_session(row) -> AuthSession:
    return AuthSession(
        id=row.id,
        refresh_token=row.refresh_token,
        user_id=row.user_id,
        expires_at=from_iso(row.expires_at),
        deleted=bool(row.deleted),
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )
