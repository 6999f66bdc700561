"""Unit tests for auth/credentials.py -- user creation, authentication, password change.

Covers:
- create_user() stores a salted hash and rejects duplicate login names
- authenticate() returns INVALID_CREDENTIALS for unknown names and wrong passwords alike
- change_password() replaces hash and salt and deletes every session of the user
- get_identity() never loads credential columns
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from auth.credentials import authenticate, change_password, create_user, validate_password
from auth.models import Role, Session, User
from auth.results import AuthError, Err, Ok
from auth.store import SessionStore, UserStore
from auth.tokens import generate_csrf_secret, generate_session_token

from conftest import FrozenClock


def _session_for(user: User, persistent: bool = False) -> Session:
    return Session(
        token=generate_session_token(),
        user_uuid=user.uuid,
        expires=FrozenClock()() + timedelta(hours=24),
        persistent=persistent,
        csrf_secret=generate_csrf_secret(),
    )


class TestCreateUser:
    def test_creates_user_with_salted_hash(self, db) -> None:
        with db.transaction() as conn:
            result = create_user(UserStore(conn), "ada", "Ada Lovelace", "analytical", Role.instructor)
        assert isinstance(result, Ok)
        user = result.value
        assert user.role is Role.instructor
        assert user.password_hash is not None and user.password_salt is not None

        with db.transaction() as conn:
            stored = UserStore(conn).get_by_login_name("ada")
        assert stored == user

    def test_duplicate_login_name(self, db, learner) -> None:
        with db.transaction() as conn:
            result = create_user(UserStore(conn), learner.login_name, "Someone Else", "whatever1", Role.learner)
        assert result == Err(AuthError.DUPLICATE_LOGIN)

    def test_unique_index_backs_the_check(self, db, learner) -> None:
        """Inserting past the pre-check still fails at the store."""
        clone = User(
            uuid="00000000-0000-0000-0000-000000000000",
            login_name=learner.login_name,
            display_name="Clone",
            role=Role.learner,
            password_hash=learner.password_hash,
            password_salt=learner.password_salt,
        )
        with pytest.raises(IntegrityError):
            with db.transaction() as conn:
                UserStore(conn).insert(clone)

    def test_identity_has_no_credentials(self, db, learner) -> None:
        with db.transaction() as conn:
            identity = UserStore(conn).get_identity(learner.uuid)
        assert identity is not None
        assert identity.login_name == learner.login_name
        assert not hasattr(identity, "password_hash")


class TestAuthenticate:
    def test_correct_password(self, db, learner) -> None:
        with db.transaction() as conn:
            result = authenticate(UserStore(conn), "learner", "learner-pass-123")
        assert isinstance(result, Ok)
        assert result.value.uuid == learner.uuid

    def test_wrong_password_and_unknown_user_look_the_same(self, db, learner) -> None:
        with db.transaction() as conn:
            users = UserStore(conn)
            wrong = authenticate(users, "learner", "nope-nope-nope")
            unknown = authenticate(users, "nobody", "learner-pass-123")
        assert wrong == unknown == Err(AuthError.INVALID_CREDENTIALS)


class TestChangePassword:
    def test_replaces_hash_and_salt(self, db, learner) -> None:
        with db.transaction() as conn:
            change_password(UserStore(conn), SessionStore(conn), learner, "brand-new-pass")
        with db.transaction() as conn:
            updated = UserStore(conn).get_by_uuid(learner.uuid)
        assert updated.password_salt != learner.password_salt
        assert validate_password(updated, "brand-new-pass")
        assert not validate_password(updated, "learner-pass-123")

    def test_deletes_all_sessions(self, db, learner, admin) -> None:
        with db.transaction() as conn:
            sessions = SessionStore(conn)
            sessions.insert(_session_for(learner))
            sessions.insert(_session_for(learner, persistent=True))
            sessions.insert(_session_for(admin))

        with db.transaction() as conn:
            removed = change_password(UserStore(conn), SessionStore(conn), learner, "brand-new-pass")
        assert removed == 2

        with db.transaction() as conn:
            sessions = SessionStore(conn)
            assert sessions.count_for_user(learner.uuid) == 0
            assert sessions.count_for_user(admin.uuid) == 1
