"""
auth/ledger.py -- Refresh-token records, rotation lineage and reuse detection.

Pattern: Repository + Data Mapper, SQLAlchemy Core.

Storage:
  A refresh token is "<token_id>.<bearer_secret>". token_id is the primary
  key. The bearer secret is never stored: secret_hash holds
  HMAC-SHA256(key, bearer_secret), the same keyed-hash scheme used for API
  keys. Refresh secrets are 256-bit random values, so a slow KDF buys nothing
  and the HMAC key keeps a stolen table useless without the server secret.

Lineage:
  Every record stores rotated_from (its parent) and chain_id (the root's
  token_id). A login starts a new chain; each rotation appends one node. The
  chain_id column is indexed, so revoking a whole lineage on reuse is one
  UPDATE, not a walk over parent pointers.

State machine per node:
  live --rotate--> rotated (closed, replaced_by set, one live successor)
  live --revoke--> revoked (closed, terminal)
  rotated/revoked + presented again --> SessionRevoked;
      rotated additionally triggers revoke_lineage(chain_id)

Atomicity [R1]:
  rotate() runs the close-parent UPDATE and the successor INSERT in a single
  engine.begin() transaction. The UPDATE is a compare-and-swap:
      WHERE token_id = :id AND rotated_at IS NULL AND revoked_at IS NULL
            AND expires_at > :now
  and rowcount must be exactly 1. Of two concurrent rotations of the same
  parent exactly one matches; the other raises before inserting anything and
  its transaction rolls back. A failure after the UPDATE also rolls back, so
  the parent is never closed without its successor existing, and the
  successor is never visible while the parent is still live.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

from sqlalchemy import Column, Index, MetaData, String, Table, and_, select
from sqlalchemy.engine import Engine

from auth.db import from_iso, make_engine, to_iso, utcnow
from auth.errors import InvalidRefreshToken, SessionRevoked
from auth.models import IssuedRefreshToken, RefreshRecord

logger = logging.getLogger("rolegate.auth.ledger")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'rolegate.db'}"

REVOKE_LOGOUT = "logout"
REVOKE_REUSE = "reuse_detected"
REVOKE_LOGOUT_ALL = "logout_all"
REVOKE_DISABLED = "identity_disabled"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_refresh_records = Table(
    "refresh_records",
    _metadata,
    Column("token_id", String(32), primary_key=True),
    Column("identity_id", String(32), nullable=False),
    Column("chain_id", String(32), nullable=False),  # token_id of the chain root
    Column("secret_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("rotated_from", String(32)),  # parent token_id, NULL for a chain root
    Column("replaced_by", String(32)),  # successor token_id once rotated
    Column("rotated_at", String(32)),
    Column("revoked_at", String(32)),
    Column("revoke_reason", String(32)),
)

Index("ix_refresh_records_chain", _refresh_records.c.chain_id)
Index("ix_refresh_records_identity", _refresh_records.c.identity_id)


class RotationConflict(InvalidRefreshToken):
    """The compare-and-swap in rotate() matched no live row."""


class RefreshLedger:
    """Repository for RefreshRecord entities.

    Usage:
        ledger = RefreshLedger(db_url, hash_key=settings.secret_key)
        issued = ledger.issue(identity.id)
        record = ledger.validate(issued.token_id, issued.bearer_secret)
        child = ledger.rotate(record)
    """

    def __init__(
        self,
        db_url: str = _DEFAULT_DB_URL,
        *,
        hash_key: str,
        ttl_seconds: int = 14 * 24 * 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not hash_key:
            raise ValueError("hash_key is required")
        self.engine: Engine = make_engine(db_url)
        self._hash_key = hash_key.encode("utf-8")
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    def _hash_secret(self, bearer_secret: str) -> str:
        return hmac.new(self._hash_key, bearer_secret.encode("utf-8"), hashlib.sha256).hexdigest()

    def matches(self, record: RefreshRecord, bearer_secret: str) -> bool:
        """Constant-time check of bearer_secret against the stored HMAC."""
        return hmac.compare_digest(record.secret_hash, self._hash_secret(bearer_secret or ""))

    def _new_values(self, identity_id: str, chain_id: str | None, rotated_from: str | None) -> tuple[dict, str]:
        now = self._clock()
        token_id = uuid.uuid4().hex
        bearer_secret = secrets.token_urlsafe(32)
        values = {
            "token_id": token_id,
            "identity_id": identity_id,
            "chain_id": chain_id or token_id,
            "secret_hash": self._hash_secret(bearer_secret),
            "issued_at": to_iso(now),
            "expires_at": to_iso(now + self.ttl),
            "rotated_from": rotated_from,
        }
        return values, bearer_secret

    # ------------------------------------------------------------------
    # Issue / validate / rotate
    # ------------------------------------------------------------------

    def issue(self, identity_id: str) -> IssuedRefreshToken:
        """Create a new chain root and return its plaintext secret exactly once.

        Successors are only ever created by rotate(), which closes the parent
        in the same transaction, so a lineage never holds two live nodes.
        """
        values, bearer_secret = self._new_values(identity_id, None, None)
        with self.engine.begin() as conn:
            conn.execute(_refresh_records.insert().values(**values))
        logger.debug("refresh token issued token_id=%s chain=%s", values["token_id"], values["chain_id"])
        return _issued(values, bearer_secret)

    def validate(self, token_id: str, bearer_secret: str) -> RefreshRecord:
        """Return the live record for (token_id, bearer_secret).

        Raises:
          InvalidRefreshToken -- unknown token id, wrong secret, or expired.
          SessionRevoked      -- the record is closed. If it was rotated away
                                 (a replay of a superseded token) the whole
                                 lineage is revoked before raising [R2].

        A wrong secret never triggers lineage revocation: token ids travel
        in logs and session listings, so knowing one must not let anyone
        tear down someone else's session.
        """
        record = self.get(token_id)
        if record is None:
            raise InvalidRefreshToken()
        if not self.matches(record, bearer_secret):
            raise InvalidRefreshToken()
        if record.is_rotated:
            revoked = self.revoke_lineage(record.chain_id, reason=REVOKE_REUSE)
            logger.warning(
                "refresh token reuse detected token_id=%s chain=%s identity=%s revoked=%d",
                record.token_id,
                record.chain_id,
                record.identity_id,
                revoked,
            )
            raise SessionRevoked()
        if record.is_revoked:
            raise SessionRevoked()
        if record.is_expired(self._clock()):
            raise InvalidRefreshToken()
        return record

    def rotate(self, record: RefreshRecord) -> IssuedRefreshToken:
        """Close record and create its live successor atomically [R1].

        Raises RotationConflict (an InvalidRefreshToken) if the record is no
        longer live -- typically because a concurrent refresh won the race.
        """
        values, bearer_secret = self._new_values(record.identity_id, record.chain_id, record.token_id)
        now = values["issued_at"]
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_records.update()
                .where(
                    and_(
                        _refresh_records.c.token_id == record.token_id,
                        _refresh_records.c.rotated_at.is_(None),
                        _refresh_records.c.revoked_at.is_(None),
                        _refresh_records.c.expires_at > now,
                    )
                )
                .values(rotated_at=now, replaced_by=values["token_id"])
            )
            if result.rowcount != 1:
                raise RotationConflict()
            conn.execute(_refresh_records.insert().values(**values))
        logger.debug("refresh token rotated %s -> %s", record.token_id, values["token_id"])
        return _issued(values, bearer_secret)

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke_chain(self, token_id: str, reason: str = REVOKE_LOGOUT) -> bool:
        """Revoke one live record (logout). No-op on a closed or unknown record.

        Descendants need no marking: a rotated record is already closed, and
        a revoked live record can never be rotated, so nothing descends from
        it afterwards. Returns True if a record was revoked.
        """
        now = to_iso(self._clock())
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_records.update()
                .where(
                    and_(
                        _refresh_records.c.token_id == token_id,
                        _refresh_records.c.rotated_at.is_(None),
                        _refresh_records.c.revoked_at.is_(None),
                    )
                )
                .values(revoked_at=now, revoke_reason=reason)
            )
        return result.rowcount > 0

    def revoke_lineage(self, chain_id: str, reason: str = REVOKE_REUSE) -> int:
        """Revoke every not-yet-revoked node of one rotation chain. Returns rows touched."""
        now = to_iso(self._clock())
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_records.update()
                .where(and_(_refresh_records.c.chain_id == chain_id, _refresh_records.c.revoked_at.is_(None)))
                .values(revoked_at=now, revoke_reason=reason)
            )
        return result.rowcount

    def revoke_all_for_identity(self, identity_id: str, reason: str = REVOKE_LOGOUT_ALL) -> int:
        """Revoke every live record of an identity (logout everywhere / disable)."""
        now = to_iso(self._clock())
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_records.update()
                .where(
                    and_(
                        _refresh_records.c.identity_id == identity_id,
                        _refresh_records.c.rotated_at.is_(None),
                        _refresh_records.c.revoked_at.is_(None),
                    )
                )
                .values(revoked_at=now, revoke_reason=reason)
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Queries / housekeeping
    # ------------------------------------------------------------------

    def get(self, token_id: str) -> RefreshRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_records.select().where(_refresh_records.c.token_id == token_id)).fetchone()
        return _row_to_record(row) if row is not None else None

    def list_live(self, identity_id: str) -> list[RefreshRecord]:
        """Live records of an identity, newest first -- one per active session."""
        now = to_iso(self._clock())
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_records.select()
                .where(
                    and_(
                        _refresh_records.c.identity_id == identity_id,
                        _refresh_records.c.rotated_at.is_(None),
                        _refresh_records.c.revoked_at.is_(None),
                        _refresh_records.c.expires_at > now,
                    )
                )
                .order_by(_refresh_records.c.issued_at.desc())
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def lineage(self, chain_id: str) -> list[RefreshRecord]:
        """Every node of a chain, oldest first (forensics)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_records.select()
                .where(_refresh_records.c.chain_id == chain_id)
                .order_by(_refresh_records.c.issued_at)
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def purge_expired(self, retention_seconds: int = 0) -> int:
        """Delete records that expired more than retention_seconds ago.

        Whole chains are purged together: a chain is deleted only when its
        newest node has expired past retention, so reuse detection never
        loses the rotated ancestors of a still-valid token.
        """
        cutoff = to_iso(self._clock() - timedelta(seconds=retention_seconds))
        live_chains = select(_refresh_records.c.chain_id).where(_refresh_records.c.expires_at > cutoff)
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_records.delete().where(_refresh_records.c.chain_id.not_in(live_chains)))
        if result.rowcount:
            logger.info("purged %d expired refresh records", result.rowcount)
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _issued(values: dict, bearer_secret: str) -> IssuedRefreshToken:
    return IssuedRefreshToken(
        token_id=values["token_id"],
        chain_id=values["chain_id"],
        bearer_secret=bearer_secret,
        issued_at=from_iso(values["issued_at"]),
        expires_at=from_iso(values["expires_at"]),
    )


def _row_to_record(row) -> RefreshRecord:
    return RefreshRecord(
        token_id=row.token_id,
        identity_id=row.identity_id,
        chain_id=row.chain_id,
        secret_hash=row.secret_hash,
        issued_at=from_iso(row.issued_at),
        expires_at=from_iso(row.expires_at),
        rotated_from=row.rotated_from,
        replaced_by=row.replaced_by,
        rotated_at=from_iso(row.rotated_at),
        revoked_at=from_iso(row.revoked_at),
        revoke_reason=row.revoke_reason,
    )
