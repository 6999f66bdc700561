"""
auth/cookies.py -- Session cookie naming, directives, and parsing.

The resolver and the use cases never touch a response object. They return
CookieDirective values; the transaction layer applies them to the outgoing
Starlette response with response.set_cookie() once the transaction has
committed.

Cookie attributes:
  httponly=True: JS cannot read the cookie (XSS mitigation).
  samesite="lax": not sent on cross-site POST.
  secure + "__Secure-" name prefix in production: browsers refuse to store a
      __Secure- cookie that did not arrive over HTTPS.
  expires: only for persistent sessions. A non-persistent cookie lives as long
      as the browser; the store still caps the session at 24h.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping

from auth.models import Session
from auth.tokens import encode_token

COOKIE_NAME = "session"
SECURE_COOKIE_NAME = "__Secure-session"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class CookieDirective:
    """One Set-Cookie instruction for the response."""

    key: str
    value: str
    secure: bool
    expires: datetime | None = None
    max_age: int | None = None

    @property
    def clears(self) -> bool:
        return self.max_age == 0

    def apply(self, response) -> None:
        """Write this directive onto a FastAPI/Starlette response."""
        response.set_cookie(
            self.key,
            value=self.value,
            expires=self.expires,
            max_age=self.max_age,
            path="/",
            secure=self.secure,
            httponly=True,
            samesite="lax",
        )


class CookieCodec:
    """Builds and reads the session cookie for one deployment mode."""

    def __init__(self, production: bool = False) -> None:
        self.production = production

    @property
    def name(self) -> str:
        return SECURE_COOKIE_NAME if self.production else COOKIE_NAME

    def set_session(self, session: Session) -> CookieDirective:
        return CookieDirective(
            key=self.name,
            value=encode_token(session.token),
            secure=self.production,
            expires=session.expires if session.persistent else None,
        )

    def clear(self) -> CookieDirective:
        return CookieDirective(
            key=self.name,
            value="",
            secure=self.production,
            expires=_EPOCH,
            max_age=0,
        )

    def read(self, cookies: Mapping[str, str]) -> str | None:
        """Return the raw session cookie value, or None when absent or empty."""
        return cookies.get(self.name) or None
