"""
api/routes/v1/auth.py -- Session endpoints.

Routes:
  POST /api/v1/auth/{role}/join     -- register + open first session (201)
  POST /api/v1/auth/{role}/login    -- password login, opens a new session
  POST /api/v1/auth/refresh         -- rotate a refresh token
  POST /api/v1/auth/logout          -- revoke one refresh token (204)
  POST /api/v1/auth/logout-all      -- revoke every session of the bearer
  GET  /api/v1/auth/me              -- principal of the bearer
  GET  /api/v1/auth/sessions        -- live sessions of the bearer

Security:
  [H2] join/login/refresh are rate-limited per IP.
  [C1] login failures collapse to one InvalidCredentials, whatever the cause.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Errors are raised as auth.errors.AuthError subclasses; api/main.py maps
  them to status codes and the shared error envelope.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, refresh_limit
from api.models import (
    JoinRequest,
    LoginRequest,
    LogoutAllResponse,
    PrincipalResponse,
    RefreshRequest,
    SessionInfo,
    SessionResponse,
)
from auth.dependencies import get_current_principal
from auth.models import AuthorizedPrincipal, AuthorizedSession
from auth.services import AuthServices
from auth.tokens import parse_refresh_token

# Auth policy:
# - POST /auth/{role}/join, /auth/{role}/login, /auth/refresh, /auth/logout:
#       public -- possession of credentials or the refresh token is the proof
# - POST /auth/logout-all, GET /auth/me, GET /auth/sessions:
#       require a valid access token (get_current_principal)
router = APIRouter()


def _services(request: Request) -> AuthServices:
    return request.app.state.auth


def _session_response(session: AuthorizedSession, status_code: int = 200) -> JSONResponse:
    body = SessionResponse(
        subject_id=session.subject_id,
        role=session.role,
        tenant_id=session.tenant_id,
        access_token=session.access_token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        access_expires_at=session.access_expires_at,
        refresh_token=session.refresh_token,
        refresh_expires_at=session.refresh_expires_at,
        session_id=session.session_id,
    )
    resp = JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/{role}/join", response_model=SessionResponse, status_code=201)
def join(request: Request, role: str, body: JoinRequest) -> JSONResponse:
    """Register an identity in the role namespace and open its first session."""
    session = _services(request).issuer.join(body.tenant_id, role, body.identifier, body.password, body.attributes)
    return _session_response(session, status_code=201)


@limiter.limit(login_limit)  # [H2]
@router.post("/auth/{role}/login", response_model=SessionResponse)
def login(request: Request, role: str, body: LoginRequest) -> JSONResponse:
    """Authenticate and open a new session.

    Wrong identifier, wrong password and disabled account all return the same
    401 invalid_credentials body [C1].
    """
    session = _services(request).issuer.login(body.tenant_id, role, body.identifier, body.password)
    return _session_response(session)


@limiter.limit(refresh_limit)  # [H2]
@router.post("/auth/refresh", response_model=SessionResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is closed for good."""
    token_id, secret = parse_refresh_token(body.refresh_token)
    session = _services(request).rotator.refresh(token_id, secret)
    return _session_response(session)


@router.post("/auth/logout", status_code=204)
def logout(request: Request, body: RefreshRequest) -> Response:
    """Revoke the presented refresh token. Idempotent for already-closed tokens."""
    token_id, secret = parse_refresh_token(body.refresh_token)
    _services(request).rotator.logout(token_id, secret)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all", response_model=LogoutAllResponse)
def logout_all(request: Request, principal: AuthorizedPrincipal = Depends(get_current_principal)) -> LogoutAllResponse:
    """Revoke every live session of the caller.

    The caller's current access token keeps working until it expires.
    """
    revoked = _services(request).rotator.logout_everywhere(principal.subject_id)
    return LogoutAllResponse(revoked=revoked)


@router.get("/auth/me", response_model=PrincipalResponse)
async def me(principal: AuthorizedPrincipal = Depends(get_current_principal)) -> PrincipalResponse:
    """Return the verified claims of the bearer. No database access."""
    return PrincipalResponse(
        subject_id=principal.subject_id,
        role=principal.role,
        tenant_id=principal.tenant_id,
        expires_at=principal.expires_at,
    )


@router.get("/auth/sessions", response_model=list[SessionInfo])
def list_sessions(
    request: Request, principal: AuthorizedPrincipal = Depends(get_current_principal)
) -> list[SessionInfo]:
    """List the caller's live sessions. Secrets are never returned."""
    records = _services(request).ledger.list_live(principal.subject_id)
    return [
        SessionInfo(session_id=r.chain_id, token_id=r.token_id, issued_at=r.issued_at, expires_at=r.expires_at)
        for r in records
    ]
