"""Unit tests for auth/resolver.py -- cookie -> identity resolution and rotation.

Covers, in resolution order:
- No cookie -> NOT_LOGGED_IN with no cookies sent
- Unknown or malformed token -> NOT_LOGGED_IN and a clearing cookie
- Expired session (expires <= now) -> row deleted, clearing cookie
- Session outside its renewal window -> authenticated, nothing rotated
- Session inside its renewal window -> successor created, cookie moves to it
- Old token presented again -> same successor, no second rotation
- Successor presented -> predecessor deleted, successor becomes fresh
- Persistent sessions renew within 24h and live a year
- Session whose user no longer exists -> row deleted, NOT_LOGGED_IN
"""

from __future__ import annotations

from datetime import timedelta

from auth.models import FRESH, RotatedFrom, RotatingTo, Session
from auth.results import AuthError, Err, Ok
from auth.store import SessionStore
from auth.tokens import decode_token, encode_token, generate_csrf_secret, generate_session_token


def _issue(db, service, user, persistent: bool = False) -> str:
    """Forge a session and return its cookie value."""
    with db.transaction() as conn:
        return service.forge_session(conn, user, persistent=persistent).value


def _resolve(db, service, cookie):
    with db.transaction() as conn:
        return service.resolve(conn, cookie)


def _get(db, cookie: str) -> Session | None:
    with db.transaction() as conn:
        return SessionStore(conn).get(decode_token(cookie))


class TestRejections:
    def test_no_cookie(self, db, service) -> None:
        resolution = _resolve(db, service, None)
        assert resolution.outcome == Err(AuthError.NOT_LOGGED_IN)
        assert resolution.cookies == []

    def test_unknown_token_clears_cookie(self, db, service) -> None:
        resolution = _resolve(db, service, encode_token(generate_session_token()))
        assert resolution.outcome == Err(AuthError.NOT_LOGGED_IN)
        assert len(resolution.cookies) == 1 and resolution.cookies[0].clears

    def test_malformed_token_clears_cookie(self, db, service) -> None:
        resolution = _resolve(db, service, "%%% not a token %%%")
        assert resolution.outcome == Err(AuthError.NOT_LOGGED_IN)
        assert resolution.cookies[0].clears

    def test_expired_session_is_deleted(self, db, service, clock, learner) -> None:
        cookie = _issue(db, service, learner)
        clock.advance(hours=24)  # expires == now counts as expired
        resolution = _resolve(db, service, cookie)
        assert resolution.outcome == Err(AuthError.NOT_LOGGED_IN)
        assert resolution.cookies[0].clears
        assert _get(db, cookie) is None

    def test_missing_user_deletes_session(self, db, service, clock) -> None:
        orphan = Session(
            token=generate_session_token(),
            user_uuid="no-such-user",
            expires=clock() + timedelta(hours=24),
            persistent=False,
            csrf_secret=generate_csrf_secret(),
        )
        with db.transaction() as conn:
            SessionStore(conn).insert(orphan)
        resolution = _resolve(db, service, encode_token(orphan.token))
        assert resolution.outcome == Err(AuthError.NOT_LOGGED_IN)
        with db.transaction() as conn:
            assert SessionStore(conn).get(orphan.token) is None


class TestAuthenticated:
    def test_fresh_session_outside_window(self, db, service, clock, learner) -> None:
        cookie = _issue(db, service, learner)
        clock.advance(hours=12, seconds=-1)
        resolution = _resolve(db, service, cookie)
        assert isinstance(resolution.outcome, Ok)
        assert resolution.authenticated.identity.uuid == learner.uuid
        assert resolution.cookies == []
        assert _get(db, cookie).link == FRESH

    def test_csrf_secret_is_the_sessions(self, db, service, learner) -> None:
        cookie = _issue(db, service, learner)
        resolution = _resolve(db, service, cookie)
        assert resolution.authenticated.csrf_secret == _get(db, cookie).csrf_secret


class TestRotation:
    def test_rotates_inside_window(self, db, service, clock, learner) -> None:
        cookie = _issue(db, service, learner)
        clock.advance(hours=12, seconds=1)
        resolution = _resolve(db, service, cookie)

        assert resolution.authenticated is not None
        assert len(resolution.cookies) == 1
        new_cookie = resolution.cookies[0].value
        assert new_cookie != cookie

        old, new = _get(db, cookie), _get(db, new_cookie)
        assert old.link == RotatingTo(successor=new.token)
        assert new.link == RotatedFrom(predecessor=old.token)
        assert new.expires == clock() + timedelta(hours=24)
        assert new.csrf_secret != old.csrf_secret
        assert new.persistent is False

    def test_repeat_resolution_reuses_successor(self, db, service, clock, learner) -> None:
        cookie = _issue(db, service, learner)
        clock.advance(hours=13)
        first = _resolve(db, service, cookie)
        second = _resolve(db, service, cookie)

        assert second.authenticated is not None
        assert [c.value for c in second.cookies] == [c.value for c in first.cookies]
        with db.transaction() as conn:
            assert len(SessionStore(conn).successors_of(decode_token(cookie))) == 1

    def test_old_session_serves_in_flight_requests(self, db, service, clock, learner) -> None:
        cookie = _issue(db, service, learner)
        clock.advance(hours=13)
        rotated = _resolve(db, service, cookie)
        again = _resolve(db, service, cookie)
        assert again.authenticated.csrf_secret == rotated.authenticated.csrf_secret

    def test_presenting_successor_retires_predecessor(self, db, service, clock, learner) -> None:
        cookie = _issue(db, service, learner)
        clock.advance(hours=13)
        new_cookie = _resolve(db, service, cookie).cookies[0].value

        resolution = _resolve(db, service, new_cookie)
        assert resolution.authenticated is not None
        assert resolution.cookies == []
        assert _get(db, cookie) is None
        assert _get(db, new_cookie).link == FRESH

        # The retired token is now simply unknown.
        stale = _resolve(db, service, cookie)
        assert stale.outcome == Err(AuthError.NOT_LOGGED_IN)
        assert stale.cookies[0].clears

    def test_persistent_window_and_lifetime(self, db, service, clock, learner) -> None:
        cookie = _issue(db, service, learner, persistent=True)
        clock.advance(days=364, hours=-1)
        assert _resolve(db, service, cookie).cookies == []

        clock.advance(hours=2)
        resolution = _resolve(db, service, cookie)
        new = _get(db, resolution.cookies[0].value)
        assert new.persistent is True
        assert new.expires == clock() + timedelta(days=365)
        assert resolution.cookies[0].expires == new.expires
