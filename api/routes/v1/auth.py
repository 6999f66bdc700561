"""
api/routes/v1/auth.py -- Login status, login/logout/password change, current user.

Routes:
  GET  /api/v1/login     -- {"status", "logged_in"} for the presented cookie (HEAD too)
  POST /api/v1/login     -- command=login | logout | change_password
  GET  /api/v1/auth/me   -- current identity plus its CSRF secret (requires auth)

Security:
  [C1] Login failures return the same invalid_credentials error whether the
       login name is unknown or the password is wrong.
  [C3] POST /login requires X-Grades-CSRF. For login and logout the literal
       value "login" is accepted because the caller may not have a session
       (and so no secret) yet; a cross-site form cannot set custom headers at
       all. change_password always runs with a session and requires that
       session's own secret.
  [M5] Cache-Control: no-store on every /login response.
  GET /auth/me is the only place the CSRF secret leaves the server.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Connection

from api.models import (
    ChangePasswordCommand,
    LoginRequest,
    LoginStatusResponse,
    LogoutCommand,
    MeResponse,
    error_envelope,
)
from auth.csrf import CSRF_HEADER, check_csrf, check_login_csrf
from auth.resolver import Authenticated, Resolution
from auth.results import AuthError, Err
from auth.sessions import SessionService
from auth.tokens import encode_token
from auth.transaction import Reply, error_reply, json_transaction_with_user, run_transaction

logger = logging.getLogger("gradebook.api")

# Auth policy:
# - GET  /api/v1/login:    public -- reports whether the cookie is a live session
# - POST /api/v1/login:    public, header-guarded [C3]; change_password requires a session
# - GET  /api/v1/auth/me:  requires auth (json_transaction_with_user)
router = APIRouter()


def _status(status: str, logged_in: bool) -> dict:
    return LoginStatusResponse(status=status, logged_in=logged_in).model_dump()


def _no_store(response: JSONResponse) -> JSONResponse:
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return response


# ---------------------------------------------------------------------------
# Login endpoint
# ---------------------------------------------------------------------------


@router.api_route("/login", methods=["GET", "HEAD"], response_model=LoginStatusResponse)
def login_status(request: Request) -> JSONResponse:
    """Report whether the presented session cookie is logged in.

    Resolution runs as usual, so a session inside its renewal window is
    rotated here too.
    """

    def handler(conn: Connection, resolution: Resolution) -> Reply:
        if resolution.authenticated is None:
            return Reply(200, _status("Logged Out", False))
        return Reply(200, _status("Logged In", True))

    return _no_store(run_transaction(request, handler, validate_csrf=False))


@router.post("/login", response_model=LoginStatusResponse)
def login_command(
    request: Request,
    body: Annotated[LoginRequest, Body(discriminator="command")],
) -> JSONResponse:
    """Dispatch login / logout / change_password.

    login:            logs out any current session chain first, then checks
                      credentials; failure returns 401 invalid_credentials
                      and issues no session cookie.
    logout:           deletes the presented session chain, clears the cookie.
    change_password:  requires a session, its CSRF secret and the current
                      password; on success every session of the user is
                      replaced by one new one.
    """
    service: SessionService = request.app.state.session_service
    csrf_header = request.headers.get(CSRF_HEADER)
    cookie_value = service.codec.read(request.cookies)

    def handler(conn: Connection, resolution: Resolution) -> Reply:
        if isinstance(body, ChangePasswordCommand):
            return _change_password(service, conn, resolution, body, csrf_header)

        authenticated = resolution.authenticated
        csrf = check_login_csrf(csrf_header, authenticated.csrf_secret if authenticated else None)
        if isinstance(csrf, Err):
            return error_reply(csrf.error)

        if isinstance(body, LogoutCommand):
            return Reply(200, _status("Logged Out", False), cookies=service.logout(conn, cookie_value))

        cookies = resolution.cookies
        if authenticated is not None:
            cookies = service.logout(conn, cookie_value)
        result = service.login(conn, body.username, body.password, persistent=body.remember)
        if isinstance(result, Err):
            return error_reply(result.error, cookies=cookies)
        return Reply(200, _status("Logged in", True), cookies=result.value)

    return _no_store(run_transaction(request, handler, validate_csrf=False))


def _change_password(
    service: SessionService,
    conn: Connection,
    resolution: Resolution,
    body: ChangePasswordCommand,
    csrf_header: str | None,
) -> Reply:
    authenticated = resolution.authenticated
    if authenticated is None:
        return error_reply(AuthError.NOT_LOGGED_IN)
    # The caller has a session, so only its own secret will do [C3].
    csrf = check_csrf("POST", csrf_header, authenticated.csrf_secret)
    if isinstance(csrf, Err):
        return error_reply(csrf.error)
    if body.old_password == body.new_password:
        return Reply(400, error_envelope("password_unchanged", "Old password cannot be the same as new password."))
    result = service.change_password(conn, resolution, body.old_password, body.new_password)
    if isinstance(result, Err):
        if result.error is AuthError.INVALID_CREDENTIALS:
            return Reply(403, error_envelope("old_password_mismatch", "Old password does not match current password."))
        return error_reply(result.error)
    return Reply(200, _status("Password change successful", True), cookies=result.value)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request) -> JSONResponse:
    """Return the current identity and the CSRF secret of its session."""

    def handler(conn: Connection, authenticated: Authenticated) -> Reply:
        identity = authenticated.identity
        return Reply(
            200,
            MeResponse(
                uuid=identity.uuid,
                login_name=identity.login_name,
                display_name=identity.display_name,
                role=identity.role.value,
                csrf=encode_token(authenticated.csrf_secret),
            ).model_dump(mode="json"),
        )

    return json_transaction_with_user(request, handler)
