"""
auth/transaction.py -- One request, one transaction: resolve, guard, run, respond.

Every route that touches the store goes through run_transaction() or
json_transaction_with_user(). Inside a single Database.transaction():

  1. the session cookie is resolved (possibly rotating or deleting rows),
  2. for mutating verbs the CSRF header is checked,
  3. the route's handler runs with the same Connection.

The transaction commits after the handler returns a Reply, so rotation writes
and the handler's own writes land together. If the handler raises, everything
rolls back and the exception propagates to the app's exception handlers; no
cookies are sent for work that did not commit.

Handlers return Reply objects instead of raising HTTPException for expected
4xx outcomes, so the session bookkeeping of that request still commits.

Layer rule: auth/transaction.py may import from fastapi/starlette because it
sits at the HTTP seam. It does not import from api/.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Connection

from auth.cookies import CookieDirective
from auth.csrf import CSRF_HEADER
from auth.resolver import Authenticated, Resolution
from auth.results import AuthError, Err, error_http_status, error_message
from auth.sessions import SessionService
from core.database import Database


@dataclass
class Reply:
    """What a handler wants sent back.

    cookies, when not None, replaces the cookies produced by session
    resolution (login and logout issue their own).
    """

    status_code: int
    body: Any
    cookies: list[CookieDirective] | None = None


def error_body(error: AuthError, detail: str | None = None) -> dict:
    """Build the standard {"error": {...}} envelope for an AuthError."""
    body: dict = {"code": error.value, "message": error_message(error)}
    if detail is not None:
        body["detail"] = detail
    return {"error": body}


def error_reply(error: AuthError, cookies: list[CookieDirective] | None = None) -> Reply:
    return Reply(status_code=error_http_status(error), body=error_body(error), cookies=cookies)


def run_transaction(
    request: Request,
    handler: Callable[[Connection, Resolution], Reply],
    validate_csrf: bool = True,
) -> JSONResponse:
    """Resolve the request's session and run handler in one transaction.

    The handler always runs, authenticated or not, and decides what an
    unauthenticated caller gets. With validate_csrf=False the CSRF guard is
    skipped (the login endpoint does its own check).
    """
    db: Database = request.app.state.db
    service: SessionService = request.app.state.session_service
    cookie_value = service.codec.read(request.cookies)

    with db.transaction() as conn:
        if validate_csrf:
            resolution = service.user_from_session(
                conn, cookie_value, request.method, request.headers.get(CSRF_HEADER)
            )
        else:
            resolution = service.resolve(conn, cookie_value)
        reply = handler(conn, resolution)

    response = JSONResponse(status_code=reply.status_code, content=reply.body)
    cookies = reply.cookies if reply.cookies is not None else resolution.cookies
    for directive in cookies:
        directive.apply(response)
    return response


def json_transaction_with_user(
    request: Request,
    handler: Callable[[Connection, Authenticated], Reply],
) -> JSONResponse:
    """Like run_transaction(), but only calls handler for an authenticated, CSRF-clean request.

    Otherwise the resolution's error (NOT_LOGGED_IN or CSRF_MISSING) becomes
    the response, with whatever cookies resolution produced.
    """

    def _guarded(conn: Connection, resolution: Resolution) -> Reply:
        if isinstance(resolution.outcome, Err):
            return error_reply(resolution.outcome.error)
        return handler(conn, resolution.outcome.value)

    return run_transaction(request, _guarded)
