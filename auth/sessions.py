"""
auth/sessions.py -- Login, logout, and password-change use cases.

SessionService composes the credential store, session store, resolver, CSRF
guard and cookie codec into the entry points the HTTP layer calls. Every
method takes the Connection of the request's transaction; nothing here opens
or commits one.

Eviction:
  forge_session() inserts the new session and then keeps only the
  MAX_SESSIONS_PER_KIND latest-expiring sessions of the same user and
  persistence type. Per-user growth is bounded without a background job.

Logout:
  Deletes the presented session and whichever session it is linked to, so a
  half-finished rotation leaves nothing behind.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Connection

from auth import credentials
from auth.cookies import CookieCodec, CookieDirective
from auth.csrf import check_csrf
from auth.models import RotatedFrom, RotatingTo, Session, User
from auth.resolver import Clock, Resolution, SessionResolver, policy_for, utc_now
from auth.results import AuthError, Err, Ok, Result
from auth.store import SessionStore, UserStore
from auth.tokens import decode_token, generate_csrf_secret, generate_session_token

logger = logging.getLogger("gradebook.auth")

MAX_SESSIONS_PER_KIND = 20


class SessionService:
    """Entry points of the session engine.

    Usage:
        service = SessionService(production=settings.production)
        with db.transaction() as conn:
            resolution = service.user_from_session(conn, cookie, "POST", header)
    """

    def __init__(self, production: bool = False, clock: Clock = utc_now) -> None:
        self.codec = CookieCodec(production=production)
        self.clock = clock
        self.resolver = SessionResolver(self.codec, clock=clock)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, conn: Connection, cookie_value: str | None) -> Resolution:
        """Resolve without a CSRF check (read-only use, or the login endpoint)."""
        return self.resolver.resolve(conn, cookie_value)

    def user_from_session(
        self,
        conn: Connection,
        cookie_value: str | None,
        method: str,
        csrf_header: str | None,
    ) -> Resolution:
        """Resolve the session and, for mutating verbs, enforce the CSRF header."""
        resolution = self.resolver.resolve(conn, cookie_value)
        authenticated = resolution.authenticated
        if authenticated is None:
            return resolution
        guard = check_csrf(method, csrf_header, authenticated.csrf_secret)
        if isinstance(guard, Err):
            logger.warning("CSRF check failed for user %s on %s", authenticated.identity.login_name, method)
            return Resolution(guard, resolution.cookies, resolution.session)
        return resolution

    # ------------------------------------------------------------------
    # Session creation
    # ------------------------------------------------------------------

    def forge_session(self, conn: Connection, user: User, persistent: bool = False) -> CookieDirective:
        """Insert a brand-new session for user, evict the oldest, return its cookie."""
        sessions = SessionStore(conn)
        session = Session(
            token=generate_session_token(),
            user_uuid=user.uuid,
            expires=self.clock() + policy_for(persistent).lifetime,
            persistent=persistent,
            csrf_secret=generate_csrf_secret(),
        )
        sessions.insert(session)
        self._evict(sessions, user, persistent)
        return self.codec.set_session(session)

    def _evict(self, sessions: SessionStore, user: User, persistent: bool) -> int:
        keep = sessions.newest_ids(user.uuid, persistent, MAX_SESSIONS_PER_KIND)
        if len(keep) < MAX_SESSIONS_PER_KIND:
            return 0
        removed = sessions.delete_except(user.uuid, persistent, keep)
        if removed:
            logger.info("Evicted %d old session(s) for %s (persistent=%s)", removed, user.login_name, persistent)
        return removed

    # ------------------------------------------------------------------
    # Use cases
    # ------------------------------------------------------------------

    def login(
        self,
        conn: Connection,
        login_name: str,
        password: str,
        persistent: bool = False,
    ) -> Result[list[CookieDirective]]:
        """Check credentials and issue a session. Err(INVALID_CREDENTIALS) on any mismatch."""
        result = credentials.authenticate(UserStore(conn), login_name, password)
        if isinstance(result, Err):
            logger.warning("Failed login for %r", login_name)
            return result
        cookie = self.forge_session(conn, result.value, persistent=persistent)
        logger.info("User %s logged in (persistent=%s)", login_name, persistent)
        return Ok([cookie])

    def logout(self, conn: Connection, cookie_value: str | None) -> list[CookieDirective]:
        """Delete the presented session and its chain partner. Returns the cookies to send."""
        if not cookie_value:
            return []
        sessions = SessionStore(conn)
        token = decode_token(cookie_value)
        session = sessions.get(token) if token else None
        if session is not None:
            chain = [session.token]
            if isinstance(session.link, RotatingTo):
                chain.append(session.link.successor)
            elif isinstance(session.link, RotatedFrom):
                chain.append(session.link.predecessor)
            chain.extend(s.token for s in sessions.successors_of(session.token))
            sessions.delete_many(chain)
            logger.info("User %s logged out (%d session row(s) removed)", session.user_uuid, len(set(chain)))
        return [self.codec.clear()]

    def change_password(
        self,
        conn: Connection,
        resolution: Resolution,
        old_password: str,
        new_password: str,
    ) -> Result[list[CookieDirective]]:
        """Change the caller's own password and re-issue their session.

        Err(NOT_LOGGED_IN) without a session, Err(INVALID_CREDENTIALS) when
        old_password does not match. Every existing session of the user is
        invalidated; the caller gets one new session of the same persistence.
        """
        authenticated = resolution.authenticated
        if authenticated is None or resolution.session is None:
            return Err(AuthError.NOT_LOGGED_IN)
        users = UserStore(conn)
        user = users.get_by_uuid(authenticated.identity.uuid)
        if user is None:
            return Err(AuthError.NOT_LOGGED_IN)
        if not credentials.validate_password(user, old_password):
            logger.warning("Password change for %s rejected: old password mismatch", user.login_name)
            return Err(AuthError.INVALID_CREDENTIALS)
        credentials.change_password(users, SessionStore(conn), user, new_password)
        return Ok([self.forge_session(conn, user, persistent=resolution.session.persistent)])

    def force_change_password(self, conn: Connection, login_name: str, new_password: str) -> User | None:
        """Admin reset: set a user's password and invalidate their sessions. None if unknown."""
        users = UserStore(conn)
        user = users.get_by_login_name(login_name)
        if user is None:
            return None
        credentials.change_password(users, SessionStore(conn), user, new_password)
        return user
