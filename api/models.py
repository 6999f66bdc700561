"""
API request and response models for the grade-book REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Bounds from the password-change rules; also applied to admin-set passwords.
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 64


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    instructor = "instructor"
    learner = "learner"


# ---------------------------------------------------------------------------
# Login endpoint -- request body is discriminated by "command"
# ---------------------------------------------------------------------------


class LoginCommand(BaseModel):
    command: Literal["login"]
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    # "Remember me": persistent sessions get a dated cookie and a one-year lifetime.
    remember: bool = False


class LogoutCommand(BaseModel):
    command: Literal["logout"]


class ChangePasswordCommand(BaseModel):
    command: Literal["change_password"]
    old_password: str = Field(max_length=255)
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)


# Routes declare these with Body(discriminator="command").
LoginRequest = Union[LoginCommand, LogoutCommand, ChangePasswordCommand]


class LoginStatusResponse(BaseModel):
    """Response for GET/POST /api/v1/login."""

    model_config = ConfigDict(frozen=True)

    status: str
    logged_in: bool


# ---------------------------------------------------------------------------
# Admin endpoint -- request body is discriminated by "command"
# ---------------------------------------------------------------------------


class NewUserCommand(BaseModel):
    command: Literal["new_user"]
    login_name: str = Field(min_length=1, max_length=255)
    display_name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    role: RoleEnum


class ForceChangePasswordCommand(BaseModel):
    command: Literal["force_change_password"]
    login_name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)


AdminRequest = Union[NewUserCommand, ForceChangePasswordCommand]


class StatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str


class UserResponse(BaseModel):
    """Public view of a user. Never includes credential fields."""

    model_config = ConfigDict(frozen=True)

    uuid: str
    login_name: str
    display_name: str
    role: RoleEnum


class MeResponse(UserResponse):
    """Response for GET /api/v1/auth/me.

    csrf is the base64 secret the client must echo in X-Grades-CSRF on every
    state-changing request. It is only ever delivered in a response body.
    """

    csrf: str


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


def error_envelope(code: str, message: str, detail: Optional[str] = None) -> dict:
    """Render the ErrorResponse envelope for a route's own 4xx replies."""
    return ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(exclude_none=True)
