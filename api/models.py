"""
API request and response models for Keyward REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=1, max_length=72)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=50)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    # Not stripped by str_strip_whitespace -- validated again in AuthService
    password: str = Field(min_length=6, max_length=72)
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)


class RoleAssign(BaseModel):
    role: str = Field(min_length=1, max_length=50)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    username: str


class UserResponse(BaseModel):
    """Public view of an account. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    status: str
    enabled: bool
    failed_login_attempts: int
    locked_at: Optional[str]
    last_login_at: Optional[str]
    roles: list[str]
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            status=user.status.value,
            enabled=user.enabled,
            failed_login_attempts=user.failed_login_attempts,
            locked_at=user.locked_at.isoformat() if user.locked_at else None,
            last_login_at=user.last_login_at.isoformat() if user.last_login_at else None,
            roles=sorted(user.roles),
            created_at=user.created_at or "",
        )


class MeResponse(BaseModel):
    user_id: int
    username: str
    roles: list[str]
    permissions: list[str]


class ProductListResponse(BaseModel):
    products: list[str]


class ErrorDetail(BaseModel):
    """Structured error body shared by every error response."""

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
