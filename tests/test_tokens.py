"""
tests/test_tokens.py -- Unit tests for auth.tokens.TokenCodec and the refresh-token wire format.

Covers:
  - sign/verify with role, tenant, kid header and issuer
  - expiry and issued-in-the-future checks with the fixed leeway
  - signature, algorithm, issuer and key-id rejection
  - tokens signed before a hot key rotation keep verifying during the grace window
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from auth.errors import InvalidRefreshToken, InvalidToken
from auth.keys import KeyRing, SigningKey
from auth.tokens import TokenCodec, format_refresh_token, parse_refresh_token

KEY_A = "a" * 32
KEY_B = "b" * 32


@pytest.fixture
def ring(clock) -> KeyRing:
    return KeyRing(SigningKey("k1", KEY_A), grace_seconds=600, clock=clock)


@pytest.fixture
def codec(ring, clock) -> TokenCodec:
    return TokenCodec(ring, ttl_seconds=900, leeway_seconds=5, clock=clock)


class TestSignVerify:
    def test_round_trip_carries_role_and_tenant(self, codec: TokenCodec) -> None:
        token = codec.sign(codec.issue_claims("id-1", "member", "acme"))
        claims = codec.verify(token)
        assert claims.sub == "id-1"
        assert claims.role == "member"
        assert claims.tenant_id == "acme"
        assert claims.exp - claims.iat == 900
        assert claims.jti

    def test_global_role_has_no_tenant_claim(self, codec: TokenCodec) -> None:
        token = codec.sign(codec.issue_claims("id-1", "admin"))
        assert "tenant_id" not in jwt.get_unverified_claims(token)
        assert codec.verify(token).tenant_id is None

    def test_header_names_signing_key(self, codec: TokenCodec) -> None:
        token = codec.sign(codec.issue_claims("id-1", "member", "acme"))
        assert jwt.get_unverified_header(token)["kid"] == "k1"

    def test_expiry_of(self, codec: TokenCodec, clock) -> None:
        claims = codec.issue_claims("id-1", "member", "acme")
        assert codec.expiry_of(claims).timestamp() == int(clock().timestamp()) + 900


class TestExpiry:
    def test_valid_until_exp(self, codec: TokenCodec, clock) -> None:
        token = codec.sign(codec.issue_claims("id-1", "member", "acme"))
        clock.advance(899)
        assert codec.verify(token).sub == "id-1"

    def test_leeway_tolerates_small_skew_past_exp(self, codec: TokenCodec, clock) -> None:
        token = codec.sign(codec.issue_claims("id-1", "member", "acme"))
        clock.advance(903)
        assert codec.verify(token).sub == "id-1"

    def test_rejected_beyond_leeway(self, codec: TokenCodec, clock) -> None:
        token = codec.sign(codec.issue_claims("id-1", "member", "acme"))
        clock.advance(905)
        with pytest.raises(InvalidToken):
            codec.verify(token)

    def test_issued_in_the_future_rejected(self, ring: KeyRing, clock) -> None:
        """A verifier whose clock lags the issuer by more than the leeway refuses the token."""
        issuer = TokenCodec(ring, clock=lambda: clock() + timedelta(seconds=30))
        token = issuer.sign(issuer.issue_claims("id-1", "member", "acme"))
        verifier = TokenCodec(ring, leeway_seconds=5, clock=clock)
        with pytest.raises(InvalidToken):
            verifier.verify(token)

    def test_small_issuer_skew_tolerated(self, ring: KeyRing, clock) -> None:
        issuer = TokenCodec(ring, clock=lambda: clock() + timedelta(seconds=3))
        token = issuer.sign(issuer.issue_claims("id-1", "member", "acme"))
        verifier = TokenCodec(ring, leeway_seconds=5, clock=clock)
        assert verifier.verify(token).sub == "id-1"


class TestRejection:
    def test_garbage(self, codec: TokenCodec) -> None:
        for raw in ("", "not-a-jwt", "a.b.c"):
            with pytest.raises(InvalidToken):
                codec.verify(raw)

    def test_tampered_payload(self, codec: TokenCodec) -> None:
        token = codec.sign(codec.issue_claims("id-1", "member", "acme"))
        header, payload, signature = token.split(".")
        forged = codec.sign(codec.issue_claims("id-1", "admin"))
        with pytest.raises(InvalidToken):
            codec.verify(".".join([header, forged.split(".")[1], signature]))

    def test_wrong_key_same_kid(self, codec: TokenCodec, clock) -> None:
        other = TokenCodec(KeyRing(SigningKey("k1", KEY_B), clock=clock), clock=clock)
        token = other.sign(other.issue_claims("id-1", "admin"))
        with pytest.raises(InvalidToken):
            codec.verify(token)

    def test_unknown_kid(self, codec: TokenCodec, clock) -> None:
        other = TokenCodec(KeyRing(SigningKey("k9", KEY_A), clock=clock), clock=clock)
        token = other.sign(other.issue_claims("id-1", "member", "acme"))
        with pytest.raises(InvalidToken):
            codec.verify(token)

    def test_missing_kid(self, codec: TokenCodec, clock) -> None:
        now = int(clock().timestamp())
        token = jwt.encode(
            {"sub": "id-1", "role": "admin", "iat": now, "exp": now + 60, "iss": "rolegate"}, KEY_A, algorithm="HS256"
        )
        with pytest.raises(InvalidToken):
            codec.verify(token)

    @pytest.mark.parametrize("kid", [["k1"], {"a": 1}, 1])
    def test_non_string_kid(self, codec: TokenCodec, clock, kid) -> None:
        now = int(clock().timestamp())
        token = jwt.encode(
            {"sub": "id-1", "role": "admin", "iat": now, "exp": now + 60, "iss": "rolegate"},
            KEY_A,
            algorithm="HS256",
            headers={"kid": kid},
        )
        with pytest.raises(InvalidToken):
            codec.verify(token)

    def test_other_algorithm_rejected(self, codec: TokenCodec, clock) -> None:
        now = int(clock().timestamp())
        token = jwt.encode(
            {"sub": "id-1", "role": "admin", "iat": now, "exp": now + 60, "iss": "rolegate"},
            KEY_A,
            algorithm="HS512",
            headers={"kid": "k1"},
        )
        with pytest.raises(InvalidToken):
            codec.verify(token)

    def test_wrong_issuer(self, codec: TokenCodec, clock) -> None:
        now = int(clock().timestamp())
        token = jwt.encode(
            {"sub": "id-1", "role": "admin", "iat": now, "exp": now + 60, "iss": "someone-else"},
            KEY_A,
            algorithm="HS256",
            headers={"kid": "k1"},
        )
        with pytest.raises(InvalidToken):
            codec.verify(token)

    def test_missing_role_claim(self, codec: TokenCodec, clock) -> None:
        now = int(clock().timestamp())
        token = jwt.encode(
            {"sub": "id-1", "iat": now, "exp": now + 60, "iss": "rolegate"},
            KEY_A,
            algorithm="HS256",
            headers={"kid": "k1"},
        )
        with pytest.raises(InvalidToken):
            codec.verify(token)


class TestKeyRotation:
    def test_token_signed_before_rotation_verifies_in_grace(self, codec: TokenCodec, ring: KeyRing, clock) -> None:
        old = codec.sign(codec.issue_claims("id-1", "member", "acme"))
        ring.rotate("k2", KEY_B)
        new = codec.sign(codec.issue_claims("id-1", "member", "acme"))
        assert jwt.get_unverified_header(new)["kid"] == "k2"
        assert codec.verify(old).sub == "id-1"
        assert codec.verify(new).sub == "id-1"

    def test_retired_key_stops_verifying_after_grace(self, ring: KeyRing, clock) -> None:
        # ttl longer than the grace window so only the key check can fail
        codec = TokenCodec(ring, ttl_seconds=3600, clock=clock)
        old = codec.sign(codec.issue_claims("id-1", "member", "acme"))
        ring.rotate("k2", KEY_B)
        clock.advance(700)
        with pytest.raises(InvalidToken):
            codec.verify(old)


class TestRefreshWireFormat:
    def test_parse_formatted_token(self) -> None:
        raw = format_refresh_token("0123456789abcdef0123456789abcdef", "s3cret-part")
        assert parse_refresh_token(raw) == ("0123456789abcdef0123456789abcdef", "s3cret-part")

    def test_secret_may_contain_dots(self) -> None:
        token_id, secret = parse_refresh_token("0123456789abcdef0123456789abcdef.a.b")
        assert secret == "a.b"

    @pytest.mark.parametrize(
        "raw",
        ["", "no-separator", "0123456789abcdef0123456789abcdef.", "XYZ.secret", "0123456789ABCDEF0123456789ABCDEF.s"],
    )
    def test_malformed(self, raw: str) -> None:
        with pytest.raises(InvalidRefreshToken):
            parse_refresh_token(raw)
