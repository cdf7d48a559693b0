"""
auth/tokens.py -- Access-token signing/verification and the refresh-token wire format.

Security design decisions:
  JWT: python-jose, HMAC family (HS256 by default). Tokens carry sub, role,
       tenant_id, iat, exp, iss and jti, and the signing key id in the "kid"
       header. Verification is purely local: signature, issuer, key id and
       expiry are checked against the injected KeyRing and clock. No store is
       consulted, which is what lets AuthorizationGuard run on every request.

  Algorithm pinning: decode() is given exactly the configured algorithm, so
       a token that claims "none" or a different family is rejected.

  Clock skew: a fixed leeway (CLOCK_SKEW_LEEWAY_SECONDS) is applied to the exp
       and iat checks. It is a startup constant, never per-request.

  Refresh tokens are opaque "<token_id>.<bearer_secret>" strings. The token id
       is a public lookup key; only an HMAC of the bearer secret is stored
       (see auth/ledger.py).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.db import utcnow
from auth.errors import InvalidRefreshToken, InvalidToken
from auth.keys import KeyRing
from auth.models import AccessClaims

logger = logging.getLogger("rolegate.auth.tokens")

_REQUIRED_CLAIMS = ("sub", "role", "iat", "exp")


class TokenCodec:
    """Signs and verifies access tokens.

    Usage:
        codec = TokenCodec(KeyRing.from_settings(settings), ttl_seconds=900)
        claims = codec.issue_claims(identity.id, identity.role, identity.tenant_id)
        token = codec.sign(claims)
        codec.verify(token)   # -> AccessClaims, or raises InvalidToken
    """

    def __init__(
        self,
        keys: KeyRing,
        *,
        ttl_seconds: int = 900,
        leeway_seconds: int = 5,
        algorithm: str = "HS256",
        issuer: str = "rolegate",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.keys = keys
        self.ttl = timedelta(seconds=ttl_seconds)
        self.leeway = leeway_seconds
        self.algorithm = algorithm
        self.issuer = issuer
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, keys: KeyRing, clock: Callable[[], datetime] = utcnow) -> TokenCodec:
        return cls(
            keys,
            ttl_seconds=settings.access_token_ttl_seconds,
            leeway_seconds=settings.clock_skew_leeway_seconds,
            algorithm=settings.jwt_algorithm,
            issuer=settings.token_issuer,
            clock=clock,
        )

    def issue_claims(self, subject_id: str, role: str, tenant_id: str | None = None) -> AccessClaims:
        """Build claims for a fresh token: iat = now, exp = now + ttl."""
        now = self._clock()
        return AccessClaims(
            sub=subject_id,
            role=role,
            tenant_id=tenant_id,
            iat=int(now.timestamp()),
            exp=int((now + self.ttl).timestamp()),
            jti=uuid.uuid4().hex,
        )

    def sign(self, claims: AccessClaims) -> str:
        key = self.keys.current
        payload = {
            "sub": claims.sub,
            "role": claims.role,
            "iat": claims.iat,
            "exp": claims.exp,
            "iss": self.issuer,
        }
        if claims.tenant_id is not None:
            payload["tenant_id"] = claims.tenant_id
        if claims.jti is not None:
            payload["jti"] = claims.jti
        return jwt.encode(payload, key.secret, algorithm=self.algorithm, headers={"kid": key.kid})

    def verify(self, token: str) -> AccessClaims:
        """Return the claims of a valid token; raise InvalidToken on any failure."""
        if not token:
            raise InvalidToken()
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise InvalidToken() from exc
        kid = header.get("kid")
        if not isinstance(kid, str):
            raise InvalidToken()
        key = self.keys.resolve(kid)
        if key is None:
            raise InvalidToken()
        try:
            payload = jwt.decode(
                token,
                key.secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                # exp/iat are checked below against the injected clock with leeway.
                options={"verify_exp": False, "verify_iat": False, "verify_nbf": False, "verify_aud": False},
            )
        except JWTError as exc:
            raise InvalidToken() from exc

        if any(name not in payload for name in _REQUIRED_CLAIMS):
            raise InvalidToken()
        iat, exp = payload["iat"], payload["exp"]
        if not isinstance(iat, int) or not isinstance(exp, int):
            raise InvalidToken()
        now = int(self._clock().timestamp())
        if exp <= now - self.leeway:
            raise InvalidToken()
        if iat > now + self.leeway:
            raise InvalidToken()

        return AccessClaims(
            sub=str(payload["sub"]),
            role=str(payload["role"]),
            tenant_id=payload.get("tenant_id"),
            iat=iat,
            exp=exp,
            jti=payload.get("jti"),
        )

    @staticmethod
    def expiry_of(claims: AccessClaims) -> datetime:
        return datetime.fromtimestamp(claims.exp, tz=timezone.utc)


# ---------------------------------------------------------------------------
# Refresh token wire format
# ---------------------------------------------------------------------------

_TOKEN_ID_RE = re.compile(r"^[0-9a-f]{32}$")


def format_refresh_token(token_id: str, bearer_secret: str) -> str:
    return f"{token_id}.{bearer_secret}"


def parse_refresh_token(raw: str) -> tuple[str, str]:
    """Split "<token_id>.<bearer_secret>"; raise InvalidRefreshToken if malformed."""
    token_id, sep, secret = (raw or "").strip().partition(".")
    if not sep or not secret or not _TOKEN_ID_RE.match(token_id):
        raise InvalidRefreshToken()
    return token_id, secret
