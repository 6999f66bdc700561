"""
auth/credentials.py -- Credential store operations: create, verify, change.

All functions take repositories bound to the caller's transaction; nothing
here commits. Expected failures come back as Err(AuthError), never raised.

Security:
  [C1] authenticate() always computes one Argon2id hash, whether or not the
       login name exists, so response time does not reveal valid names.
       Unknown name and wrong password both yield INVALID_CREDENTIALS.
  [C2] change_password() deletes every session of the user in the same
       transaction as the hash update. A stolen session cannot outlive the
       password it was obtained under.
"""

from __future__ import annotations

import logging
import uuid

from auth.models import Role, User
from auth.results import AuthError, Err, Ok, Result
from auth.store import SessionStore, UserStore
from auth.tokens import DUMMY_SALT, generate_salt, hash_password, verify_password

logger = logging.getLogger("gradebook.auth")


def create_user(
    users: UserStore,
    login_name: str,
    display_name: str,
    password: str,
    role: Role,
) -> Result[User]:
    """Create a user with a freshly salted password hash.

    Returns Err(DUPLICATE_LOGIN) if login_name is already taken. A concurrent
    creation of the same name that slips past the check is stopped by the
    unique index and surfaces as sqlalchemy.exc.IntegrityError.
    """
    if users.login_name_exists(login_name):
        return Err(AuthError.DUPLICATE_LOGIN)

    salt = generate_salt()
    user = User(
        uuid=str(uuid.uuid4()),
        login_name=login_name,
        display_name=display_name,
        role=role,
        password_hash=hash_password(password, salt),
        password_salt=salt,
    )
    users.insert(user)

    logger.info("Created user %s (role=%s)", login_name, role.value)
    return Ok(user)


def validate_password(user: User, candidate: str) -> bool:
    """Return True if candidate matches the user's stored hash."""
    if user.password_hash is None or user.password_salt is None:
        return False
    return verify_password(candidate, user.password_salt, user.password_hash)


def authenticate(users: UserStore, login_name: str, password: str) -> Result[User]:
    """Look up login_name and check password, with timing equalization [C1]."""
    user = users.get_by_login_name(login_name)
    if user is None:
        # Equalize timing -- do NOT return before hashing [C1]
        hash_password(password, DUMMY_SALT)
        return Err(AuthError.INVALID_CREDENTIALS)
    if not validate_password(user, password):
        return Err(AuthError.INVALID_CREDENTIALS)
    return Ok(user)


def change_password(users: UserStore, sessions: SessionStore, user: User, new_password: str) -> int:
    """Replace the user's hash and salt and delete all of their sessions [C2].

    Returns the number of sessions invalidated.
    """
    removed = sessions.delete_for_user(user.uuid)
    salt = generate_salt()
    users.set_password(user.uuid, hash_password(new_password, salt), salt)
    logger.info("Password changed for %s; %d session(s) invalidated", user.login_name, removed)
    return removed
