"""
API request and response models for the identity REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in identity/models.py,
which own the internal domain representation. Route handlers map between the
two. Password strength is NOT checked here -- the identity core owns that
policy and reports violations with the offending field.

Separation of concerns: identity/ models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from identity.models import User

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    user = "user"
    client = "client"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/identity/users and /identity/users/client."""

    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=1, max_length=255)
    full_name: str = Field(min_length=1, max_length=255)


class VerifyRequest(BaseModel):
    """Request body for POST /api/v1/identity/verify."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(min_length=1, max_length=64)
    code: str = Field(min_length=1, max_length=16)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/identity/login.

    No format check on email: a malformed email must fail the same way as an
    unknown one (401), not with a distinguishable 422.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class UpdateUserRequest(BaseModel):
    """Request body for PUT /api/v1/identity/users/me. Omitted fields are left unchanged."""

    full_name: Optional[str] = Field(default=None, max_length=255)


class UpdateUserRoleRequest(BaseModel):
    """Request body for PUT /api/v1/identity/users/{id}/role."""

    role: RoleEnum


class BlockUserRequest(BaseModel):
    """Request body for POST /api/v1/identity/users/{id}/block."""

    reason: str = Field(default="", max_length=500)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    full_name: str
    role: str
    status: str
    is_verified: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Build a UserResponse from a domain User (Factory Method)."""
        return cls(
            id=user.id or "",
            email=user.email,
            full_name=user.full_name,
            role=user.role.value,
            status=user.status.value,
            is_verified=user.is_verified,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class LoginResponse(BaseModel):
    """Response for POST /api/v1/identity/login."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


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

    status: str = "ok"
    version: str
