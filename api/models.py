"""
API request and response models for the PKM Prototype HTTP endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two, and the
mapping never copies a password hash.

Every JSON body carries `success`; error bodies add a stable `error` code.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import ROLE_USER, ROLES, USERNAME_PATTERN, User

_ROLE_MESSAGE = 'Invalid role. Must be "user" or "admin"'


def _strip(value: object) -> object:
    return value.strip() if isinstance(value, str) else value


def _normalize_role(value: object) -> object:
    """Lowercase and strip a role string; empty means "not provided"."""
    if isinstance(value, str):
        value = value.strip().lower()
        return value or None
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Body for POST /login (form or JSON).

    Only shape is checked here. Username charset is validated too so that
    obviously bogus input is a 400, not a bcrypt round.
    Passwords are taken verbatim; only the username is stripped.
    """

    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=1, max_length=100)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, value: object) -> object:
        return _strip(value)


class UserCreate(BaseModel):
    """Body for POST /register."""

    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=6, max_length=100)
    role: Literal["admin", "user"] = ROLE_USER

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, value: object) -> object:
        return _strip(value)

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value: object) -> object:
        value = _normalize_role(value)
        if value is None:
            return ROLE_USER
        if value not in ROLES:
            raise ValueError(_ROLE_MESSAGE)
        return value


class UserUpdate(BaseModel):
    """Body for PUT /api/users/{id}. Only provided fields change."""

    password: Optional[str] = Field(default=None, min_length=6, max_length=100)
    role: Optional[Literal["admin", "user"]] = None

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value: object) -> object:
        value = _normalize_role(value)
        if value is not None and value not in ROLES:
            raise ValueError(_ROLE_MESSAGE)
        return value

    @field_validator("password", mode="before")
    @classmethod
    def empty_password_is_absent(cls, value: object) -> object:
        return value or None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Client-facing user. There is no password field by construction."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: str
    createdAt: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(id=user.id, username=user.username, role=user.role, createdAt=user.created_at)


class DeletedUser(BaseModel):
    id: int
    username: str


class LoginResponse(BaseModel):
    success: bool = True
    message: str = "Login successful"
    user: UserResponse
    token: str
    redirect: str = "/menu"


class LogoutResponse(BaseModel):
    success: bool = True
    message: str = "Logged out successfully"
    redirect: str = "/"


class UserEnvelope(BaseModel):
    success: bool = True
    message: str
    user: UserResponse


class UserListResponse(BaseModel):
    success: bool = True
    message: str = "Users retrieved successfully"
    count: int
    users: list[UserResponse]


class DeleteResponse(BaseModel):
    success: bool = True
    message: str = "User deleted successfully"
    user: DeletedUser


class ErrorResponse(BaseModel):
    """Uniform error envelope. detail is only populated when DEBUG=true."""

    success: bool = False
    error: str
    message: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str = "healthy"
    version: str
    components: dict[str, str]
