"""
API request and response models for rolegate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

No response model has a field for a credential hash or a stored secret
hash. The plaintext refresh token appears only in SessionResponse, the one
response that hands it to its owner.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class StatusEnum(str, Enum):
    active = "active"
    disabled = "disabled"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class JoinRequest(BaseModel):
    """Request body for POST /api/v1/auth/{role}/join.

    tenant_id is required for tenant-scoped roles and must be omitted for
    platform-global roles; the role registry enforces the pairing.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    tenant_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    identifier: str = Field(min_length=1, max_length=320)
    # max_length keeps request bodies bounded; argon2 has no input truncation.
    password: str = Field(min_length=8, max_length=255)
    attributes: dict[str, str] = Field(default_factory=dict, max_length=20)


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    tenant_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    identifier: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    """Body for POST /api/v1/auth/refresh and /logout: the opaque refresh token."""

    refresh_token: str = Field(min_length=34, max_length=256)


class StatusPatch(BaseModel):
    status: StatusEnum


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    subject_id: str
    role: str
    tenant_id: Optional[str] = None
    access_token: str
    token_type: str = "bearer"
    access_expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime
    session_id: str


class PrincipalResponse(BaseModel):
    subject_id: str
    role: str
    tenant_id: Optional[str] = None
    expires_at: datetime


class SessionInfo(BaseModel):
    """One live session. token_id is the public half of the refresh token."""

    session_id: str
    token_id: str
    issued_at: datetime
    expires_at: datetime


class LogoutAllResponse(BaseModel):
    revoked: int


class IdentityResponse(BaseModel):
    id: str
    tenant_id: Optional[str] = None
    role: str
    identifier: str
    status: StatusEnum
    created_at: str
    updated_at: str


class SecurityEventResponse(BaseModel):
    id: int
    event_type: str
    identity_id: Optional[str] = None
    tenant_id: Optional[str] = None
    role: Optional[str] = None
    token_id: Optional[str] = None
    detail: Optional[str] = None
    occurred_at: str


# ---------------------------------------------------------------------------
# Error + health envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Structured error body. code is stable and machine-readable."""

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
