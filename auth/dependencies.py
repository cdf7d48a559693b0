"""
auth/dependencies.py -- FastAPI Depends() helpers for access-token authorization.

Reads "Authorization: Bearer <access token>" and runs it through the
AuthorizationGuard wired onto app.state.auth. No database access happens
here: the principal is built from verified token claims alone.

get_current_principal() raises InvalidToken (-> 401) when the header is
missing or the token does not verify. require_roles(...) additionally raises
Forbidden (-> 403) when the principal's role is not in the allowed set. The
AuthError -> HTTP mapping is registered in api/main.py.

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.errors import InvalidToken
from auth.models import AuthorizedPrincipal


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise InvalidToken()
    return token.strip()


def get_current_principal(request: Request) -> AuthorizedPrincipal:
    """Require a valid access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: AuthorizedPrincipal = Depends(get_current_principal)): ...
    """
    guard = request.app.state.auth.guard
    return guard.authorize(_bearer_token(request))


def require_roles(*roles: str) -> Callable[[Request], AuthorizedPrincipal]:
    """Build a dependency that admits only the given roles.

        @router.get("/moderation")
        async def route(principal: AuthorizedPrincipal = Depends(require_roles("admin", "moderator"))): ...
    """
    allowed = frozenset(roles)

    def dependency(request: Request) -> AuthorizedPrincipal:
        guard = request.app.state.auth.guard
        return guard.authorize(_bearer_token(request), required_roles=allowed)

    return dependency


require_admin = require_roles("admin")
