"""
api/routes/v1/admin.py -- Admin account commands.

Routes:
  POST /api/v1/admin  -- command=new_user | force_change_password (admin only)

Both commands run inside the same transaction as the caller's session
resolution and CSRF check (json_transaction_with_user).
force_change_password invalidates every session of the target user.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from api.models import AdminRequest, NewUserCommand, StatusResponse, UserResponse, error_envelope
from auth import credentials
from auth.models import Role
from auth.resolver import Authenticated
from auth.results import Err
from auth.sessions import SessionService
from auth.store import UserStore
from auth.transaction import Reply, error_reply, json_transaction_with_user

# Auth policy:
# - POST /api/v1/admin: requires auth + CSRF header + admin role
router = APIRouter()


@router.post("/admin", response_model=StatusResponse)
def admin_command(
    request: Request,
    body: Annotated[AdminRequest, Body(discriminator="command")],
) -> JSONResponse:
    """Create a user or reset a user's password. Admin only."""
    service: SessionService = request.app.state.session_service

    def handler(conn: Connection, authenticated: Authenticated) -> Reply:
        if authenticated.identity.role is not Role.admin:
            return Reply(403, error_envelope("forbidden", "Admin access required."))

        if isinstance(body, NewUserCommand):
            result = credentials.create_user(
                UserStore(conn),
                body.login_name,
                body.display_name,
                body.password,
                Role(body.role.value),
            )
            if isinstance(result, Err):
                return error_reply(result.error)
            user = result.value
            return Reply(
                201,
                UserResponse(
                    uuid=user.uuid,
                    login_name=user.login_name,
                    display_name=user.display_name,
                    role=user.role.value,
                ).model_dump(mode="json"),
            )

        # ForceChangePasswordCommand
        if service.force_change_password(conn, body.login_name, body.password) is None:
            return Reply(404, error_envelope("not_found", "User not found."))
        return Reply(200, StatusResponse(status="Password changed").model_dump())

    try:
        return json_transaction_with_user(request, handler)
    except IntegrityError as exc:
        # A concurrent new_user for the same login name won the unique index.
        raise HTTPException(
            status_code=409,
            detail={"code": "duplicate_login", "message": "A user with that login name already exists."},
        ) from exc
