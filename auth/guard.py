"""
auth/guard.py -- Per-request access-token check.

AuthorizationGuard verifies the bearer's access token with TokenCodec and
returns the AuthorizedPrincipal business handlers consume. It performs no
I/O and holds no locks beyond the key ring's, so it is safe to call on every
request.
"""

from __future__ import annotations

from collections.abc import Iterable

from auth.errors import Forbidden
from auth.models import AuthorizedPrincipal
from auth.tokens import TokenCodec


class AuthorizationGuard:
    def __init__(self, codec: TokenCodec) -> None:
        self.codec = codec

    def authorize(self, raw_token: str, required_roles: Iterable[str] | None = None) -> AuthorizedPrincipal:
        """Verify raw_token and, if given, check its role against required_roles.

        Raises InvalidToken on a bad signature, unknown key or expiry, and
        Forbidden when the role is not allowed.
        """
        claims = self.codec.verify(raw_token)
        if required_roles is not None and claims.role not in set(required_roles):
            raise Forbidden()
        return AuthorizedPrincipal(
            subject_id=claims.sub,
            role=claims.role,
            tenant_id=claims.tenant_id,
            expires_at=self.codec.expiry_of(claims),
        )
