"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; stores, the codec, and the session services do the work.

Secret-bearing fields (credential_hash, access_token, refresh_token,
secret_hash, bearer_secret) are declared with repr=False so they never show
up in logs, tracebacks, or assertion messages.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class IdentityStatus(str, Enum):
    active = "active"
    disabled = "disabled"


@dataclass(frozen=True)
class RoleNamespace:
    """One entry of the closed, deployment-defined role set.

    tenant_scoped=False marks a platform-global role (e.g. admin): identities
    in that namespace carry no tenant_id. Every other role requires one.
    """

    name: str
    tenant_scoped: bool = True


@dataclass
class Identity:
    """A registered principal, scoped to a tenant and a role namespace.

    Identities are never physically deleted by the auth core; disabling flips
    status so RefreshRecord.identity_id and the security event trail keep
    pointing at a real row.
    """

    id: str
    role: str
    identifier: str
    credential_hash: str = field(repr=False)
    tenant_id: str | None = None
    status: IdentityStatus = IdentityStatus.active
    attributes: dict = field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status is IdentityStatus.active


@dataclass
class RefreshRecord:
    """Server-side state of one refresh token (one node of a rotation chain).

    chain_id is the token_id of the chain root. It indexes the whole lineage
    so reuse handling is a single UPDATE rather than a walk over rotated_from.

    A record is live while rotated_at, revoked_at are both None and
    expires_at is in the future. rotated_at and revoked_at are write-once.
    """

    token_id: str
    identity_id: str
    chain_id: str
    secret_hash: str = field(repr=False)
    issued_at: datetime
    expires_at: datetime
    rotated_from: str | None = None
    replaced_by: str | None = None
    rotated_at: datetime | None = None
    revoked_at: datetime | None = None
    revoke_reason: str | None = None

    @property
    def is_rotated(self) -> bool:
        return self.rotated_at is not None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    @property
    def is_closed(self) -> bool:
        return self.is_rotated or self.is_revoked

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def is_live(self, now: datetime) -> bool:
        return not self.is_closed and not self.is_expired(now)


@dataclass
class IssuedRefreshToken:
    """Result of RefreshLedger.issue(). The only place bearer_secret ever exists in plain form."""

    token_id: str
    chain_id: str
    bearer_secret: str = field(repr=False)
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AccessClaims:
    """Claims embedded in a signed access token. Never persisted."""

    sub: str
    role: str
    iat: int
    exp: int
    tenant_id: str | None = None
    jti: str | None = None


@dataclass(frozen=True)
class AuthorizedPrincipal:
    """Verified identity/role/tenant context handed to business handlers."""

    subject_id: str
    role: str
    tenant_id: str | None
    expires_at: datetime


@dataclass
class AuthorizedSession:
    """Everything join/login/refresh hand back to the caller."""

    subject_id: str
    role: str
    tenant_id: str | None
    access_token: str = field(repr=False)
    access_expires_at: datetime
    refresh_token: str = field(repr=False)
    refresh_expires_at: datetime
    session_id: str = ""  # chain_id of the rotation lineage


@dataclass
class SecurityEvent:
    """One row of the security audit trail. Never carries credential material."""

    event_type: str
    occurred_at: str
    identity_id: str | None = None
    tenant_id: str | None = None
    role: str | None = None
    token_id: str | None = None
    detail: str | None = None
    id: int | None = None
