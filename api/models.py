"""
API request and response models for lockgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the internal
domain representation. Route handlers map between the two.

The 423 locked-account body uses camelCase keys (remainingMinutes,
attemptsRemaining) because that is the published login contract; everything
else is snake_case.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    user = "user"


class AdminRevokeReasonEnum(str, Enum):
    """Reasons an admin may give for revoking every session of an account."""

    admin_action = "admin_action"
    security_incident = "security_incident"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=8, max_length=255)


class AccountCreate(BaseModel):
    """Request body for POST /api/v1/auth/users (admin only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8, max_length=255)
    role: RoleEnum = RoleEnum.user


class RevokeSessionsRequest(BaseModel):
    reason: AdminRevokeReasonEnum = AdminRevokeReasonEnum.admin_action


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    email: str
    role: str


class LoginFailedResponse(BaseModel):
    """401 body for a wrong password that did not (yet) lock the account."""

    success: bool = False
    error: str
    attemptsRemaining: int


class LockedAccountResponse(BaseModel):
    """423 body for a locked account."""

    success: bool = False
    error: str
    locked: bool = True
    remainingMinutes: int
    message: str


class MeResponse(BaseModel):
    user_id: int
    email: str
    role: str


class AccountResponse(BaseModel):
    id: int
    email: str
    role: str
    is_active: bool
    failed_attempt_count: int
    locked_until: Optional[str] = None
    created_at: str


class RevokeSessionsResponse(BaseModel):
    user_id: int
    reason: str
    revoked_before: str


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
