"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper. UserStore and SessionStore are the
repositories; _row_to_user / _row_to_identity / _row_to_session are the
mappers. Resolver and use-case code never touches SQL directly.

Transaction scope:
  Both repositories are bound to a Connection, not an Engine. The caller opens
  the transaction (core.database.Database.transaction) and every read and
  write made through the repositories joins it. Results are always fully
  consumed (.first(), .fetchall(), .scalar()) so no statement is left open
  between calls.

Rotation race:
  claim_rotation() is a compare-and-set: it only flips a session from fresh to
  rotating_to when the row is still fresh. Of N concurrent requests that all
  saw a fresh row, exactly one update affects a row; the rest get rowcount 0
  and go back to read the successor the winner recorded.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Float,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import FRESH, Identity, Role, RotatedFrom, RotatingTo, Session, SessionLink, User

logger = logging.getLogger("gradebook.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("uuid", String(36), nullable=False, unique=True),
    Column("login_name", String(255), nullable=False, unique=True),
    Column("display_name", String(255), nullable=False),
    Column("password_hash", LargeBinary, nullable=False),
    Column("password_salt", LargeBinary, nullable=False),
    Column("role", String(20), nullable=False),
)

_sessions = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", LargeBinary(16), nullable=False, unique=True),
    Column("user_uuid", String(36), nullable=False, index=True),
    Column("expires", Float, nullable=False, index=True),  # epoch seconds, UTC
    Column("persistent", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("csrf_secret", LargeBinary(16), nullable=False),
    Column("link_state", String(16), nullable=False, server_default="fresh"),
    Column("linked_token", LargeBinary(16)),  # NULL when link_state = fresh
    Index("ix_sessions_user_persistent_expires", "user_uuid", "persistent", "expires"),
)

_LINK_FRESH = "fresh"
_LINK_ROTATING_TO = "rotating_to"
_LINK_ROTATED_FROM = "rotated_from"


def create_schema(engine: Engine) -> None:
    """Create tables and indexes if they do not exist. Idempotent."""
    metadata.create_all(engine)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_epoch(moment: datetime) -> float:
    return moment.timestamp()


def _from_epoch(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _link_columns(link: SessionLink) -> dict:
    if isinstance(link, RotatingTo):
        return {"link_state": _LINK_ROTATING_TO, "linked_token": link.successor}
    if isinstance(link, RotatedFrom):
        return {"link_state": _LINK_ROTATED_FROM, "linked_token": link.predecessor}
    return {"link_state": _LINK_FRESH, "linked_token": None}


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        with db.transaction() as conn:
            users = UserStore(conn)
            user = users.get_by_login_name("alice")
    """

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def login_name_exists(self, login_name: str) -> bool:
        count = self.conn.execute(
            select(func.count()).select_from(_users).where(_users.c.login_name == login_name)
        ).scalar()
        return (count or 0) > 0

    def insert(self, user: User) -> None:
        """Insert a new user.

        Raises sqlalchemy.exc.IntegrityError if login_name or uuid is taken.
        create_user() checks login_name first; the unique index is what makes
        the check hold under concurrent creation.
        """
        self.conn.execute(
            _users.insert().values(
                uuid=user.uuid,
                login_name=user.login_name,
                display_name=user.display_name,
                password_hash=user.password_hash,
                password_salt=user.password_salt,
                role=user.role.value,
            )
        )

    def get_by_login_name(self, login_name: str) -> User | None:
        """Look up a user with credentials by exact login name. Returns None if not found."""
        row = self.conn.execute(_users.select().where(_users.c.login_name == login_name)).first()
        return _row_to_user(row) if row is not None else None

    def get_by_uuid(self, user_uuid: str) -> User | None:
        """Look up a user with credentials by uuid. Returns None if not found."""
        row = self.conn.execute(_users.select().where(_users.c.uuid == user_uuid)).first()
        return _row_to_user(row) if row is not None else None

    def get_identity(self, user_uuid: str) -> Identity | None:
        """Look up a user without selecting the credential columns."""
        row = self.conn.execute(
            select(_users.c.uuid, _users.c.login_name, _users.c.display_name, _users.c.role).where(
                _users.c.uuid == user_uuid
            )
        ).first()
        return _row_to_identity(row) if row is not None else None

    def set_password(self, user_uuid: str, password_hash: bytes, password_salt: bytes) -> bool:
        """Replace hash and salt. Returns True if a row was updated."""
        result = self.conn.execute(
            _users.update()
            .where(_users.c.uuid == user_uuid)
            .values(password_hash=password_hash, password_salt=password_salt)
        )
        return result.rowcount > 0


class SessionStore:
    """Repository for Session rows, keyed by token."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def get(self, token: bytes) -> Session | None:
        row = self.conn.execute(_sessions.select().where(_sessions.c.token == token)).first()
        return _row_to_session(row) if row is not None else None

    def insert(self, session: Session) -> None:
        """Insert a session. Raises IntegrityError on a token collision."""
        self.conn.execute(
            _sessions.insert().values(
                token=session.token,
                user_uuid=session.user_uuid,
                expires=_to_epoch(session.expires),
                persistent=1 if session.persistent else 0,
                csrf_secret=session.csrf_secret,
                **_link_columns(session.link),
            )
        )

    def replace(self, session: Session) -> bool:
        """Overwrite every mutable column of the row with session's values."""
        result = self.conn.execute(
            _sessions.update()
            .where(_sessions.c.token == session.token)
            .values(
                user_uuid=session.user_uuid,
                expires=_to_epoch(session.expires),
                persistent=1 if session.persistent else 0,
                csrf_secret=session.csrf_secret,
                **_link_columns(session.link),
            )
        )
        return result.rowcount > 0

    def claim_rotation(self, token: bytes, successor: bytes) -> bool:
        """Mark a fresh session as rotating to successor.

        Returns True only for the caller whose update flipped the row. False
        means the row is gone or another request already started rotation.
        """
        result = self.conn.execute(
            _sessions.update()
            .where((_sessions.c.token == token) & (_sessions.c.link_state == _LINK_FRESH))
            .values(link_state=_LINK_ROTATING_TO, linked_token=successor)
        )
        return result.rowcount == 1

    def clear_predecessor(self, token: bytes) -> None:
        """Turn a rotated_from session back into a fresh one."""
        self.conn.execute(
            _sessions.update()
            .where((_sessions.c.token == token) & (_sessions.c.link_state == _LINK_ROTATED_FROM))
            .values(link_state=_LINK_FRESH, linked_token=None)
        )

    def delete(self, token: bytes) -> int:
        result = self.conn.execute(_sessions.delete().where(_sessions.c.token == token))
        return result.rowcount

    def delete_many(self, tokens: list[bytes]) -> int:
        if not tokens:
            return 0
        result = self.conn.execute(_sessions.delete().where(_sessions.c.token.in_(tokens)))
        return result.rowcount

    def delete_for_user(self, user_uuid: str) -> int:
        """Delete every session of a user, whatever its persistence or link state."""
        result = self.conn.execute(_sessions.delete().where(_sessions.c.user_uuid == user_uuid))
        return result.rowcount

    def newest_ids(self, user_uuid: str, persistent: bool, limit: int) -> list[int]:
        """Return row ids of the user's `limit` latest-expiring sessions of one persistence type.

        Bounded, sorted scan: ordered by expires descending, ties broken by
        insertion order (newest first).
        """
        rows = self.conn.execute(
            select(_sessions.c.id)
            .where((_sessions.c.user_uuid == user_uuid) & (_sessions.c.persistent == (1 if persistent else 0)))
            .order_by(_sessions.c.expires.desc(), _sessions.c.id.desc())
            .limit(limit)
        ).fetchall()
        return [row.id for row in rows]

    def delete_except(self, user_uuid: str, persistent: bool, keep_ids: list[int]) -> int:
        """Delete the user's sessions of one persistence type whose id is not in keep_ids."""
        condition = (_sessions.c.user_uuid == user_uuid) & (_sessions.c.persistent == (1 if persistent else 0))
        if keep_ids:
            condition = condition & _sessions.c.id.not_in(keep_ids)
        result = self.conn.execute(_sessions.delete().where(condition))
        return result.rowcount

    def count_for_user(self, user_uuid: str, persistent: bool | None = None) -> int:
        condition = _sessions.c.user_uuid == user_uuid
        if persistent is not None:
            condition = condition & (_sessions.c.persistent == (1 if persistent else 0))
        count = self.conn.execute(select(func.count()).select_from(_sessions).where(condition)).scalar()
        return count or 0

    def successors_of(self, predecessor: bytes) -> list[Session]:
        """Return every session created by rotating predecessor."""
        rows = self.conn.execute(
            _sessions.select().where(
                (_sessions.c.link_state == _LINK_ROTATED_FROM) & (_sessions.c.linked_token == predecessor)
            )
        ).fetchall()
        return [_row_to_session(r) for r in rows]

    def purge_expired(self, now: datetime) -> int:
        """Delete every session whose expiry is at or before now. Returns rows removed."""
        result = self.conn.execute(_sessions.delete().where(_sessions.c.expires <= _to_epoch(now)))
        if result.rowcount:
            logger.info("Purged %d expired session(s)", result.rowcount)
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        uuid=row.uuid,
        login_name=row.login_name,
        display_name=row.display_name,
        role=Role(row.role),
        password_hash=bytes(row.password_hash),
        password_salt=bytes(row.password_salt),
    )


def _row_to_identity(row) -> Identity:
    return Identity(
        uuid=row.uuid,
        login_name=row.login_name,
        display_name=row.display_name,
        role=Role(row.role),
    )


def _row_to_link(state: str, linked_token) -> SessionLink:
    if linked_token is None:
        return FRESH
    if state == _LINK_ROTATING_TO:
        return RotatingTo(successor=bytes(linked_token))
    if state == _LINK_ROTATED_FROM:
        return RotatedFrom(predecessor=bytes(linked_token))
    return FRESH


def _row_to_session(row) -> Session:
    return Session(
        token=bytes(row.token),
        user_uuid=row.user_uuid,
        expires=_from_epoch(row.expires),
        persistent=bool(row.persistent),
        csrf_secret=bytes(row.csrf_secret),
        link=_row_to_link(row.link_state, row.linked_token),
    )
