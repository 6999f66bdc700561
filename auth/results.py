"""
auth/results.py -- Tagged results for the session engine.

Every engine operation that can fail for an expected reason returns
Ok(value) or Err(AuthError) instead of raising. Callers branch with
isinstance(); only store connectivity failures propagate as exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class AuthError(str, Enum):
    NOT_LOGGED_IN = "not_logged_in"
    CSRF_MISSING = "csrf_missing"
    DUPLICATE_LOGIN = "duplicate_login"
    INVALID_CREDENTIALS = "invalid_credentials"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: AuthError


Result = Union[Ok[T], Err]


# INVALID_CREDENTIALS deliberately says nothing about which half was wrong,
# so the message cannot be used to enumerate login names.
_MESSAGES: dict[AuthError, str] = {
    AuthError.NOT_LOGGED_IN: "Not logged in.",
    AuthError.CSRF_MISSING: "CSRF header missing or invalid.",
    AuthError.DUPLICATE_LOGIN: "A user with that login name already exists.",
    AuthError.INVALID_CREDENTIALS: "Invalid username or password.",
}

_HTTP_STATUS: dict[AuthError, int] = {
    AuthError.NOT_LOGGED_IN: 401,
    AuthError.CSRF_MISSING: 400,
    AuthError.DUPLICATE_LOGIN: 409,
    AuthError.INVALID_CREDENTIALS: 401,
}


def error_message(error: AuthError) -> str:
    return _MESSAGES[error]


def error_http_status(error: AuthError) -> int:
    """Map an AuthError to the HTTP status the API responds with.

    CSRF_MISSING is a 400, not a 401: the caller does hold a valid session,
    the request itself is malformed.
    """
    return _HTTP_STATUS[error]
