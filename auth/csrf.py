"""
auth/csrf.py -- Double-submission CSRF guard.

State-changing verbs must carry X-Grades-CSRF equal to the base64 CSRF secret
of the resolved session. Read-only verbs are never checked. The login
endpoint, which runs before the caller has a session, accepts the literal
LOGIN_CSRF_VALUE instead; a cross-site form cannot set a custom header at all,
so the header's presence is what matters there.
"""

from __future__ import annotations

import hmac

from auth.results import AuthError, Err, Ok, Result
from auth.tokens import encode_token

CSRF_HEADER = "X-Grades-CSRF"
LOGIN_CSRF_VALUE = "login"

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def is_mutating(method: str) -> bool:
    return method.upper() in MUTATING_METHODS


def check_csrf(method: str, header_value: str | None, csrf_secret: bytes) -> Result[None]:
    """Return Ok(None) if the request may proceed, Err(CSRF_MISSING) otherwise."""
    if not is_mutating(method):
        return Ok(None)
    if not header_value:
        return Err(AuthError.CSRF_MISSING)
    if not hmac.compare_digest(header_value.encode("utf-8"), encode_token(csrf_secret).encode("ascii")):
        return Err(AuthError.CSRF_MISSING)
    return Ok(None)


def check_login_csrf(header_value: str | None, csrf_secret: bytes | None = None) -> Result[None]:
    """CSRF check for the login endpoint: the literal "login" or the session's own secret."""
    if header_value == LOGIN_CSRF_VALUE:
        return Ok(None)
    if csrf_secret is not None:
        return check_csrf("POST", header_value, csrf_secret)
    return Err(AuthError.CSRF_MISSING)
