"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores own persistence,
the resolver and SessionService own behaviour.

Session chains:
  A session is linked to at most one other session, and only in one
  direction at a time. The link is modelled as one of three variants instead
  of two nullable back-pointers:

    Fresh                     -- no rotation in progress
    RotatingTo(successor)     -- this session has been rotated; successor is
                                 the token every client should move to
    RotatedFrom(predecessor)  -- this session replaced predecessor, which is
                                 deleted the first time this token is presented

  A session with both a predecessor and a successor cannot be expressed.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union


class Role(str, Enum):
    admin = "admin"
    instructor = "instructor"
    learner = "learner"


@dataclass
class User:
    """A grade-book account.

    password_hash / password_salt are raw bytes (Argon2id output and its
    per-user random salt). They are None on records loaded through
    UserStore.get_identity(), which never selects credential columns.
    """

    uuid: str
    login_name: str
    display_name: str
    role: Role
    password_hash: bytes | None = None
    password_salt: bytes | None = None


@dataclass(frozen=True)
class Identity:
    """What a request learns about its caller. Never carries credentials."""

    uuid: str
    login_name: str
    display_name: str
    role: Role


@dataclass(frozen=True)
class Fresh:
    pass


@dataclass(frozen=True)
class RotatingTo:
    successor: bytes


@dataclass(frozen=True)
class RotatedFrom:
    predecessor: bytes


SessionLink = Union[Fresh, RotatingTo, RotatedFrom]

FRESH = Fresh()


@dataclass
class Session:
    """One stored session row.

    token and csrf_secret are 16 random bytes each. expires is a timezone-aware
    UTC datetime. user_uuid is a weak reference: the user may have been removed
    since the session was issued.
    """

    token: bytes
    user_uuid: str
    expires: datetime
    persistent: bool
    csrf_secret: bytes
    link: SessionLink = field(default=FRESH)
