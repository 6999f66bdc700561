"""
auth/resolver.py -- Turn a session cookie into an identity, rotating as needed.

Resolution order (each step runs only if the previous ones did not return):

  1. No cookie                       -> NOT_LOGGED_IN, no cookies
  2. Unknown (or undecodable) token  -> NOT_LOGGED_IN, clear cookie
  3. Session was rotated from a predecessor
                                     -> delete the predecessor, mark fresh
  4. expires <= now                  -> delete session, NOT_LOGGED_IN, clear cookie
  5. Fresh and inside the renewal window
                                     -> claim rotation, insert successor,
                                        set cookie for the successor
  6. Rotating to a successor         -> set cookie for the successor (if it
                                        still exists); this request is still
                                        served by the current session
  7. Load the user                   -> missing user deletes the session,
                                        NOT_LOGGED_IN; otherwise authenticated

The old session stays valid after step 5 until it expires or its successor
is presented, so requests already in flight with the old cookie keep working.
Step 5 is guarded by SessionStore.claim_rotation(), a compare-and-set on the
link state: of several requests racing through the renewal window, only one
inserts a successor; the others fall through to step 6 and point their
clients at the same successor.

All reads and writes go through repositories bound to the caller's
transaction, so a rotation commits together with whatever else the request
does.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone

from sqlalchemy.engine import Connection

from auth.cookies import CookieCodec, CookieDirective
from auth.models import FRESH, Fresh, Identity, RotatedFrom, RotatingTo, Session
from auth.results import AuthError, Err, Ok, Result
from auth.store import SessionStore, UserStore
from auth.tokens import decode_token, generate_csrf_secret, generate_session_token

logger = logging.getLogger("gradebook.auth")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Renewal policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenewalPolicy:
    """When a session is rotated and how long its successor lives."""

    renew_within: timedelta
    lifetime: timedelta


TRANSIENT_POLICY = RenewalPolicy(renew_within=timedelta(hours=12), lifetime=timedelta(hours=24))
PERSISTENT_POLICY = RenewalPolicy(renew_within=timedelta(hours=24), lifetime=timedelta(days=365))


def policy_for(persistent: bool) -> RenewalPolicy:
    return PERSISTENT_POLICY if persistent else TRANSIENT_POLICY


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Authenticated:
    identity: Identity
    csrf_secret: bytes


@dataclass
class Resolution:
    """Outcome of resolving one cookie, plus the cookies to send back.

    session is the stored row the request was authenticated with (None unless
    the outcome is Ok).
    """

    outcome: Result[Authenticated]
    cookies: list[CookieDirective] = field(default_factory=list)
    session: Session | None = None

    @property
    def authenticated(self) -> Authenticated | None:
        return self.outcome.value if isinstance(self.outcome, Ok) else None


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class SessionResolver:
    """Session cookie -> Resolution state machine.

    Usage:
        resolver = SessionResolver(CookieCodec(production=False))
        with db.transaction() as conn:
            resolution = resolver.resolve(conn, request.cookies.get("session"))
    """

    def __init__(self, codec: CookieCodec, clock: Clock = utc_now) -> None:
        self.codec = codec
        self.clock = clock

    def resolve(self, conn: Connection, cookie_value: str | None) -> Resolution:
        if not cookie_value:
            return Resolution(Err(AuthError.NOT_LOGGED_IN))

        sessions = SessionStore(conn)
        token = decode_token(cookie_value)
        session = sessions.get(token) if token else None
        if session is None:
            logger.debug("Unknown session token presented; clearing cookie")
            return Resolution(Err(AuthError.NOT_LOGGED_IN), [self.codec.clear()])

        if isinstance(session.link, RotatedFrom):
            session = self._retire_predecessor(sessions, session)

        now = self.clock()
        if session.expires <= now:
            sessions.delete(session.token)
            logger.info("Expired session for user %s deleted", session.user_uuid)
            return Resolution(Err(AuthError.NOT_LOGGED_IN), [self.codec.clear()])

        cookies: list[CookieDirective] = []
        policy = policy_for(session.persistent)
        if isinstance(session.link, Fresh) and session.expires - now < policy.renew_within:
            rotated = self._rotate(sessions, session, now, policy)
            if rotated is None:
                # Another request rotated (or deleted) this session first.
                current = sessions.get(session.token)
                if current is None:
                    return Resolution(Err(AuthError.NOT_LOGGED_IN), [self.codec.clear()])
                session = current
            else:
                session = rotated

        if isinstance(session.link, RotatingTo):
            successor = sessions.get(session.link.successor)
            if successor is not None:
                cookies = [self.codec.set_session(successor)]

        identity = UserStore(conn).get_identity(session.user_uuid)
        if identity is None:
            sessions.delete(session.token)
            logger.info("Session references missing user %s; deleted", session.user_uuid)
            return Resolution(Err(AuthError.NOT_LOGGED_IN), cookies)

        return Resolution(Ok(Authenticated(identity, session.csrf_secret)), cookies, session)

    def _retire_predecessor(self, sessions: SessionStore, session: Session) -> Session:
        """Delete the session this one replaced and strip the link."""
        sessions.delete(session.link.predecessor)
        sessions.clear_predecessor(session.token)
        logger.debug("Retired predecessor of session for user %s", session.user_uuid)
        return replace(session, link=FRESH)

    def _rotate(
        self,
        sessions: SessionStore,
        session: Session,
        now: datetime,
        policy: RenewalPolicy,
    ) -> Session | None:
        """Start rotation of session. Returns the updated session, or None if another request won."""
        successor = Session(
            token=generate_session_token(),
            user_uuid=session.user_uuid,
            expires=now + policy.lifetime,
            persistent=session.persistent,
            csrf_secret=generate_csrf_secret(),
            link=RotatedFrom(predecessor=session.token),
        )
        if not sessions.claim_rotation(session.token, successor.token):
            logger.debug("Rotation for user %s already claimed by a concurrent request", session.user_uuid)
            return None
        sessions.insert(successor)
        logger.info(
            "Rotated session for user %s (persistent=%s, new expiry %s)",
            session.user_uuid,
            session.persistent,
            successor.expires.isoformat(),
        )
        return replace(session, link=RotatingTo(successor=successor.token))
