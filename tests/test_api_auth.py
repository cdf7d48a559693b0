"""
tests/test_api_auth.py -- Integration tests for the /api/v1/auth routes.

Covers:
  - join (201) / login / refresh / logout / logout-all / me / sessions
  - error envelope and status mapping for every auth failure
  - Cache-Control: no-store on token-bearing and credential-failure responses
  - identical 401 bodies for unknown identifier, wrong password, disabled account
  - validation errors never echo the submitted password

The module shares one TestClient (api_client fixture), so every test joins
under its own identifier.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient
from jose import jwt

from auth.models import IdentityStatus
from auth.sessions import set_identity_status

PASSWORD = "correct-horse-1"  # noqa: S105 # nosec B105 -- test credential


def _identifier() -> str:
    return f"user-{uuid.uuid4().hex[:8]}@example.com"


def _join(client: TestClient, identifier: str, role: str = "member", tenant: str | None = "acme"):
    body = {"identifier": identifier, "password": PASSWORD}
    if tenant is not None:
        body["tenant_id"] = tenant
    return client.post(f"/api/v1/auth/{role}/join", json=body)


def _login(client: TestClient, identifier: str, password: str = PASSWORD, role: str = "member"):
    return client.post(
        f"/api/v1/auth/{role}/login",
        json={"tenant_id": "acme", "identifier": identifier, "password": password},
    )


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestJoin:
    def test_join_returns_session(self, api_client) -> None:
        client, _, _, _ = api_client
        resp = _join(client, _identifier())
        assert resp.status_code == 201
        data = resp.json()
        assert data["role"] == "member"
        assert data["tenant_id"] == "acme"
        assert data["token_type"] == "bearer"
        assert data["access_token"]
        assert data["refresh_token"].count(".") >= 1
        assert resp.headers["cache-control"] == "no-store"

    def test_join_response_has_no_hash(self, api_client) -> None:
        client, _, _, _ = api_client
        data = _join(client, _identifier()).json()
        assert "credential_hash" not in data
        assert "$argon2" not in str(data)

    def test_duplicate_join_409(self, api_client) -> None:
        client, _, _, _ = api_client
        identifier = _identifier()
        _join(client, identifier)
        resp = _join(client, identifier)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_identity"

    def test_unknown_role_422(self, api_client) -> None:
        client, _, _, _ = api_client
        resp = _join(client, _identifier(), role="superuser")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "unknown_role"

    def test_missing_tenant_for_scoped_role_422(self, api_client) -> None:
        client, _, _, _ = api_client
        resp = _join(client, _identifier(), tenant=None)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "unknown_role"

    def test_admin_join_closed(self, api_client) -> None:
        client, _, _, _ = api_client
        resp = _join(client, _identifier(), role="admin", tenant=None)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "registration_closed"

    def test_short_password_rejected_without_echo(self, api_client) -> None:
        client, _, _, _ = api_client
        resp = client.post(
            "/api/v1/auth/member/join",
            json={"tenant_id": "acme", "identifier": _identifier(), "password": "tiny7ch"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
        assert "tiny7ch" not in resp.text


class TestLogin:
    def test_login_after_join_same_subject(self, api_client) -> None:
        client, _, _, _ = api_client
        identifier = _identifier()
        joined = _join(client, identifier).json()
        resp = _login(client, identifier)
        assert resp.status_code == 200
        assert resp.json()["subject_id"] == joined["subject_id"]
        assert resp.headers["cache-control"] == "no-store"

    def test_failures_are_indistinguishable(self, api_client) -> None:
        client, services, _, _ = api_client
        identifier = _identifier()
        joined = _join(client, identifier).json()

        wrong = [_login(client, identifier, password=f"wrong-pass-{i}") for i in range(3)]
        unknown = _login(client, _identifier())

        disabled_identifier = _identifier()
        disabled = _join(client, disabled_identifier).json()
        set_identity_status(services.store, services.ledger, disabled["subject_id"], IdentityStatus.disabled)
        disabled_resp = _login(client, disabled_identifier)

        responses = [*wrong, unknown, disabled_resp]
        assert {r.status_code for r in responses} == {401}
        assert len({r.text for r in responses}) == 1
        assert responses[0].json()["error"]["code"] == "invalid_credentials"
        assert all(r.headers["cache-control"] == "no-store" for r in responses)
        assert joined["subject_id"] not in responses[0].text


class TestRefresh:
    def test_refresh_rotates(self, api_client) -> None:
        client, _, _, _ = api_client
        joined = _join(client, _identifier()).json()
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": joined["refresh_token"]})
        assert resp.status_code == 200
        data = resp.json()
        assert data["refresh_token"] != joined["refresh_token"]
        assert data["session_id"] == joined["session_id"]
        assert resp.headers["cache-control"] == "no-store"

    def test_replay_revokes_lineage(self, api_client) -> None:
        client, _, _, _ = api_client
        r0 = _join(client, _identifier()).json()["refresh_token"]
        r1 = client.post("/api/v1/auth/refresh", json={"refresh_token": r0}).json()["refresh_token"]

        replay = client.post("/api/v1/auth/refresh", json={"refresh_token": r0})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "session_revoked"

        successor = client.post("/api/v1/auth/refresh", json={"refresh_token": r1})
        assert successor.status_code == 401
        assert successor.json()["error"]["code"] == "session_revoked"

    def test_malformed_refresh_token(self, api_client) -> None:
        client, _, _, _ = api_client
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": "x" * 40})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_refresh_token"

    def test_unknown_refresh_token(self, api_client) -> None:
        client, _, _, _ = api_client
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": "0" * 32 + ".some-secret"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_refresh_token"

    def test_disabled_identity_cannot_refresh(self, api_client) -> None:
        client, services, _, _ = api_client
        joined = _join(client, _identifier()).json()
        set_identity_status(services.store, services.ledger, joined["subject_id"], IdentityStatus.disabled)
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": joined["refresh_token"]})
        assert resp.status_code == 401


class TestLogout:
    def test_logout_then_refresh_fails(self, api_client) -> None:
        client, _, _, _ = api_client
        joined = _join(client, _identifier()).json()
        resp = client.post("/api/v1/auth/logout", json={"refresh_token": joined["refresh_token"]})
        assert resp.status_code == 204
        again = client.post("/api/v1/auth/logout", json={"refresh_token": joined["refresh_token"]})
        assert again.status_code == 204
        refresh = client.post("/api/v1/auth/refresh", json={"refresh_token": joined["refresh_token"]})
        assert refresh.json()["error"]["code"] == "session_revoked"

    def test_logout_all(self, api_client) -> None:
        client, _, _, _ = api_client
        identifier = _identifier()
        joined = _join(client, identifier).json()
        _login(client, identifier)
        resp = client.post("/api/v1/auth/logout-all", headers=_bearer(joined["access_token"]))
        assert resp.status_code == 200
        assert resp.json() == {"revoked": 2}
        sessions = client.get("/api/v1/auth/sessions", headers=_bearer(joined["access_token"]))
        assert sessions.json() == []

    def test_logout_all_requires_token(self, api_client) -> None:
        client, _, _, _ = api_client
        resp = client.post("/api/v1/auth/logout-all")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"
        assert resp.headers["www-authenticate"] == "Bearer"


class TestPrincipal:
    def test_me(self, api_client) -> None:
        client, _, _, _ = api_client
        joined = _join(client, _identifier(), role="moderator").json()
        resp = client.get("/api/v1/auth/me", headers=_bearer(joined["access_token"]))
        assert resp.status_code == 200
        data = resp.json()
        assert data["subject_id"] == joined["subject_id"]
        assert data["role"] == "moderator"
        assert data["tenant_id"] == "acme"

    def test_me_rejects_garbage_token(self, api_client) -> None:
        client, _, _, _ = api_client
        assert client.get("/api/v1/auth/me", headers=_bearer("not.a.jwt")).status_code == 401
        assert client.get("/api/v1/auth/me", headers={"Authorization": "Basic abc"}).status_code == 401

    def test_me_rejects_non_string_kid(self, api_client) -> None:
        client, _, _, _ = api_client
        token = jwt.encode({"sub": "x", "role": "admin"}, "z" * 32, algorithm="HS256", headers={"kid": {"a": 1}})
        resp = client.get("/api/v1/auth/me", headers=_bearer(token))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_sessions_lists_live_chains_without_secrets(self, api_client) -> None:
        client, _, _, _ = api_client
        identifier = _identifier()
        joined = _join(client, identifier).json()
        _login(client, identifier)
        resp = client.get("/api/v1/auth/sessions", headers=_bearer(joined["access_token"]))
        assert resp.status_code == 200
        sessions = resp.json()
        assert len(sessions) == 2
        assert joined["session_id"] in {s["session_id"] for s in sessions}
        secret = joined["refresh_token"].split(".", 1)[1]
        assert secret not in resp.text
