"""
api/routes/v1/admin.py -- Operator endpoints (admin role only).

Routes:
  GET   /api/v1/admin/identities/{id}          -- identity record (no hash)
  PATCH /api/v1/admin/identities/{id}/status   -- enable / disable
  GET   /api/v1/admin/security-events          -- recent audit trail

Disabling an identity revokes its live refresh tokens immediately. Access
tokens it already holds expire on their own (ACCESS_TOKEN_TTL_SECONDS).
[M4] An admin cannot disable their own identity.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import IdentityResponse, SecurityEventResponse, StatusPatch
from auth.dependencies import require_admin
from auth.models import AuthorizedPrincipal, Identity, IdentityStatus
from auth.sessions import set_identity_status

router = APIRouter()


@router.get("/admin/identities/{identity_id}", response_model=IdentityResponse)
def get_identity(
    request: Request,
    identity_id: str,
    principal: AuthorizedPrincipal = Depends(require_admin),
) -> IdentityResponse:
    identity = request.app.state.auth.store.find_by_id(identity_id)
    return _identity_to_response(identity)


@router.patch("/admin/identities/{identity_id}/status", response_model=IdentityResponse)
def update_status(
    request: Request,
    identity_id: str,
    body: StatusPatch,
    principal: AuthorizedPrincipal = Depends(require_admin),
) -> IdentityResponse:
    """Flip an identity between active and disabled."""
    if body.status.value == IdentityStatus.disabled.value and identity_id == principal.subject_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deactivation", "message": "You cannot disable your own identity."},
        )
    services = request.app.state.auth
    identity = set_identity_status(
        services.store, services.ledger, identity_id, IdentityStatus(body.status.value), services.audit
    )
    return _identity_to_response(identity)


@router.get("/admin/security-events", response_model=list[SecurityEventResponse])
def list_security_events(
    request: Request,
    principal: AuthorizedPrincipal = Depends(require_admin),
    limit: int = Query(default=100, ge=1, le=1000),
    identity_id: Optional[str] = None,
    event_type: Optional[str] = None,
) -> list[SecurityEventResponse]:
    events = request.app.state.auth.audit.recent(limit=limit, identity_id=identity_id, event_type=event_type)
    return [
        SecurityEventResponse(
            id=e.id,
            event_type=e.event_type,
            identity_id=e.identity_id,
            tenant_id=e.tenant_id,
            role=e.role,
            token_id=e.token_id,
            detail=e.detail,
            occurred_at=e.occurred_at,
        )
        for e in events
    ]


def _identity_to_response(identity: Identity) -> IdentityResponse:
    return IdentityResponse(
        id=identity.id,
        tenant_id=identity.tenant_id,
        role=identity.role,
        identifier=identity.identifier,
        status=identity.status.value,
        created_at=identity.created_at or "",
        updated_at=identity.updated_at or "",
    )
