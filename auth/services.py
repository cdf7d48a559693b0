"""
auth/services.py -- Wiring of the auth core from Settings.

build_services() is the single place where stores, key ring, codec and the
session services are constructed. The API lifespan, the CLI and the tests
all go through it, so every entry point gets the same configuration.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from auth.audit import SecurityEventLog
from auth.db import utcnow
from auth.guard import AuthorizationGuard
from auth.keys import KeyRing
from auth.ledger import RefreshLedger
from auth.passwords import PasswordHasher
from auth.roles import RoleRegistry
from auth.sessions import RefreshRotator, SessionIssuer
from auth.store import CredentialStore
from auth.tokens import TokenCodec


@dataclass
class AuthServices:
    store: CredentialStore
    ledger: RefreshLedger
    audit: SecurityEventLog
    hasher: PasswordHasher
    keys: KeyRing
    codec: TokenCodec
    roles: RoleRegistry
    issuer: SessionIssuer
    rotator: RefreshRotator
    guard: AuthorizationGuard

    def close(self) -> None:
        self.store.close()
        self.ledger.close()
        self.audit.close()


def build_services(settings, db_url: str | None = None, clock: Callable[[], datetime] = utcnow) -> AuthServices:
    url = db_url or settings.database_url
    store = CredentialStore(url, clock=clock)
    ledger = RefreshLedger(
        url, hash_key=settings.secret_key, ttl_seconds=settings.refresh_token_ttl_seconds, clock=clock
    )
    audit = SecurityEventLog(url, clock=clock)
    hasher = PasswordHasher.from_settings(settings)
    keys = KeyRing.from_settings(settings, clock=clock)
    codec = TokenCodec.from_settings(settings, keys, clock=clock)
    roles = RoleRegistry.from_settings(settings)
    issuer = SessionIssuer(
        store,
        hasher,
        codec,
        ledger,
        roles,
        audit,
        self_registration_enabled=settings.self_registration_enabled,
    )
    rotator = RefreshRotator(store, codec, ledger, audit)
    return AuthServices(
        store=store,
        ledger=ledger,
        audit=audit,
        hasher=hasher,
        keys=keys,
        codec=codec,
        roles=roles,
        issuer=issuer,
        rotator=rotator,
        guard=AuthorizationGuard(codec),
    )
