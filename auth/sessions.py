"""
auth/sessions.py -- join / login / refresh / logout orchestration.

SessionIssuer mints a fresh session (new rotation chain) after join or a
successful credential check. RefreshRotator exchanges a refresh token for a
new access/refresh pair and closes the old one. Both are generic over role:
the role travels as data and RoleRegistry validates it.

Enumeration resistance [C1]:
  login() reports an unknown identifier, a wrong password, and a disabled
  identity as the same InvalidCredentials. An unknown identifier still costs
  one hash verification (against a dummy hash) so response time does not
  tell the cases apart either.

Refresh ordering:
  The new access token is signed before the ledger rotation commits. Signing
  is local and side-effect free; if the rotation then fails, the token is
  simply dropped and nothing is returned, so the caller never holds a new
  access token for a rotation that did not happen.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from auth import audit as events
from auth.audit import SecurityEventLog
from auth.errors import (
    IdentityDisabled,
    InvalidCredentials,
    InvalidRefreshToken,
    NotFound,
    RegistrationClosed,
    SessionRevoked,
)
from auth.ledger import REVOKE_DISABLED, REVOKE_REUSE, RefreshLedger
from auth.models import AuthorizedSession, Identity, IdentityStatus, IssuedRefreshToken
from auth.passwords import PasswordHasher
from auth.roles import RoleRegistry
from auth.store import CredentialStore
from auth.tokens import TokenCodec, format_refresh_token

logger = logging.getLogger("rolegate.auth.sessions")


def _session_for(identity: Identity, codec: TokenCodec, issued: IssuedRefreshToken) -> AuthorizedSession:
    claims = codec.issue_claims(identity.id, identity.role, identity.tenant_id)
    return AuthorizedSession(
        subject_id=identity.id,
        role=identity.role,
        tenant_id=identity.tenant_id,
        access_token=codec.sign(claims),
        access_expires_at=codec.expiry_of(claims),
        refresh_token=format_refresh_token(issued.token_id, issued.bearer_secret),
        refresh_expires_at=issued.expires_at,
        session_id=issued.chain_id,
    )


class SessionIssuer:
    """Registers identities and opens sessions.

    Every successful join/login creates exactly one new chain root in the
    ledger. Other live sessions of the same identity are left alone, so one
    identity may be signed in on several devices at once.
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        codec: TokenCodec,
        ledger: RefreshLedger,
        roles: RoleRegistry,
        audit: SecurityEventLog | None = None,
        *,
        self_registration_enabled: bool = True,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.codec = codec
        self.ledger = ledger
        self.roles = roles
        self.audit = audit
        self.self_registration_enabled = self_registration_enabled

    def join(
        self,
        tenant_id: str | None,
        role: str,
        identifier: str,
        plaintext_credential: str,
        attributes: dict | None = None,
    ) -> AuthorizedSession:
        """Register a new identity and open its first session.

        Raises UnknownRole, RegistrationClosed, or DuplicateIdentity (unchanged
        from the store).
        """
        self.roles.resolve(role, tenant_id)
        if not self.self_registration_enabled or not self.roles.is_open_for_registration(role):
            raise RegistrationClosed()
        credential_hash = self.hasher.hash(plaintext_credential)
        identity = self.store.create(tenant_id, role, identifier, credential_hash, attributes)
        session = self._open(identity)
        self._record(events.JOIN, identity, session.session_id)
        return session

    def login(self, tenant_id: str | None, role: str, identifier: str, plaintext_credential: str) -> AuthorizedSession:
        """Verify credentials and open a new session. Raises InvalidCredentials."""
        self.roles.resolve(role, tenant_id)
        try:
            identity = self.store.find_by_identifier(tenant_id, role, identifier)
        except NotFound:
            # Equalize timing -- do NOT return early before hashing [C1]
            self.hasher.verify_dummy(plaintext_credential)
            self._record_failure(tenant_id, role, None, "unknown_identifier")
            raise InvalidCredentials() from None

        if not self.hasher.verify(plaintext_credential, identity.credential_hash):
            self._record_failure(tenant_id, role, identity.id, "bad_password")
            raise InvalidCredentials()
        if not identity.is_active:
            self._record_failure(tenant_id, role, identity.id, "disabled")
            raise InvalidCredentials()

        if self.hasher.needs_rehash(identity.credential_hash):
            self.store.update_credential(identity.id, self.hasher.hash(plaintext_credential))
            logger.info("credential rehashed id=%s", identity.id)

        session = self._open(identity)
        self._record(events.LOGIN, identity, session.session_id)
        return session

    def _open(self, identity: Identity) -> AuthorizedSession:
        issued = self.ledger.issue(identity.id)
        return _session_for(identity, self.codec, issued)

    def _record(self, event_type: str, identity: Identity, token_id: str | None) -> None:
        if self.audit is not None:
            self.audit.record(
                event_type,
                identity_id=identity.id,
                tenant_id=identity.tenant_id,
                role=identity.role,
                token_id=token_id,
            )

    def _record_failure(self, tenant_id: str | None, role: str, identity_id: str | None, reason: str) -> None:
        # The reason stays server-side; the caller only ever sees InvalidCredentials.
        if self.audit is not None:
            self.audit.record(
                events.LOGIN_FAILED,
                identity_id=identity_id,
                tenant_id=tenant_id,
                role=role,
                detail=reason,
            )


class RefreshRotator:
    """Refresh-token exchange, logout and logout-everywhere."""

    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        ledger: RefreshLedger,
        audit: SecurityEventLog | None = None,
    ) -> None:
        self.store = store
        self.codec = codec
        self.ledger = ledger
        self.audit = audit

    def refresh(self, token_id: str, bearer_secret: str) -> AuthorizedSession:
        """Exchange a live refresh token for a new access/refresh pair.

        Raises:
          InvalidRefreshToken -- unknown, wrong secret, expired, or lost a
                                 concurrent rotation race.
          SessionRevoked      -- token already rotated or revoked. A replay of
                                 a rotated token has already revoked the
                                 whole lineage by the time this is raised.
          IdentityDisabled    -- the owning identity has been disabled.
        """
        try:
            record = self.ledger.validate(token_id, bearer_secret)
        except SessionRevoked:
            self._record_revoked(token_id)
            raise

        try:
            identity = self.store.find_by_id(record.identity_id)
        except NotFound:
            raise InvalidRefreshToken() from None
        if not identity.is_active:
            self._record(events.REFRESH_DISABLED, identity, record.token_id)
            raise IdentityDisabled()

        claims = self.codec.issue_claims(identity.id, identity.role, identity.tenant_id)
        access_token = self.codec.sign(claims)
        issued = self.ledger.rotate(record)
        self._record(events.REFRESH, identity, issued.token_id)
        return AuthorizedSession(
            subject_id=identity.id,
            role=identity.role,
            tenant_id=identity.tenant_id,
            access_token=access_token,
            access_expires_at=self.codec.expiry_of(claims),
            refresh_token=format_refresh_token(issued.token_id, issued.bearer_secret),
            refresh_expires_at=issued.expires_at,
            session_id=issued.chain_id,
        )

    def logout(self, token_id: str, bearer_secret: str) -> bool:
        """Revoke one session's live refresh token.

        The secret must match; token ids alone are not proof of ownership.
        Logging out an already-closed token is a no-op and returns False.
        """
        record = self.ledger.get(token_id)
        if record is None or not self.ledger.matches(record, bearer_secret):
            raise InvalidRefreshToken()
        revoked = self.ledger.revoke_chain(token_id)
        if revoked and self.audit is not None:
            self.audit.record(events.LOGOUT, identity_id=record.identity_id, token_id=token_id)
        return revoked

    def logout_everywhere(self, identity_id: str) -> int:
        """Revoke every live session of an identity. Returns the number revoked."""
        count = self.ledger.revoke_all_for_identity(identity_id)
        if self.audit is not None:
            self.audit.record(events.LOGOUT_ALL, identity_id=identity_id, detail=f"revoked={count}")
        return count

    def _record(self, event_type: str, identity: Identity, token_id: str) -> None:
        # The rotation has already committed; the caller must still get the new pair.
        if self.audit is None:
            return
        try:
            self.audit.record(
                event_type,
                identity_id=identity.id,
                tenant_id=identity.tenant_id,
                role=identity.role,
                token_id=token_id,
            )
        except SQLAlchemyError:
            logger.exception("audit write failed event=%s identity=%s token=%s", event_type, identity.id, token_id)

    def _record_revoked(self, token_id: str) -> None:
        if self.audit is None:
            return
        record = self.ledger.get(token_id)
        reuse = record is not None and record.revoke_reason == REVOKE_REUSE
        self.audit.record(
            events.REFRESH_REUSE if reuse else events.REFRESH_REVOKED,
            identity_id=record.identity_id if record else None,
            token_id=token_id,
            detail=record.revoke_reason if record else None,
        )


def set_identity_status(
    store: CredentialStore,
    ledger: RefreshLedger,
    identity_id: str,
    status: IdentityStatus,
    audit: SecurityEventLog | None = None,
) -> Identity:
    """Flip an identity's status; disabling also revokes its live sessions.

    Access tokens already issued stay valid until their short natural expiry:
    the guard never consults the store.
    """
    identity = store.set_status(identity_id, status)
    revoked = 0
    if identity.status is IdentityStatus.disabled:
        revoked = ledger.revoke_all_for_identity(identity_id, reason=REVOKE_DISABLED)
    if audit is not None:
        audit.record(
            events.STATUS_CHANGED,
            identity_id=identity.id,
            tenant_id=identity.tenant_id,
            role=identity.role,
            detail=f"status={identity.status.value} revoked={revoked}",
        )
    return identity
