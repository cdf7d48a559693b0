"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_identity is the mapper. Session services and routes never touch SQL
directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  credential_hash is returned on Identity (repr=False) for verification only;
  it never leaves the auth core.

Uniqueness:
  Identifiers are unique per (tenant, role namespace), not globally: the same
  e-mail may register as a member of two tenants, or as both a member and a
  moderator of one tenant.

  Platform-global roles have no tenant. They are stored with
  tenant_scope = "" rather than NULL because SQLite treats two NULL values as
  distinct in UNIQUE constraints, which would allow duplicate global
  identities. The mapper turns "" back into tenant_id=None.

Mutations:
  create() is the only write performed by the session flows. set_status()
  and update_credential() exist for the admin surface and the CLI.
  Identities are never deleted -- status flips to "disabled" instead so the
  refresh ledger and the security event trail keep a valid reference.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from sqlalchemy import Column, Index, MetaData, String, Table, Text, UniqueConstraint, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.db import make_engine, to_iso, utcnow
from auth.errors import DuplicateIdentity, NotFound
from auth.models import Identity, IdentityStatus

logger = logging.getLogger("rolegate.auth.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'rolegate.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "identities",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex, immutable
    Column("tenant_scope", String(64), nullable=False, server_default=""),  # "" = platform-global
    Column("role", String(64), nullable=False),
    Column("identifier", String(320), nullable=False),
    Column("credential_hash", Text, nullable=False),
    Column("status", String(16), nullable=False, server_default=IdentityStatus.active.value),
    Column("attributes", Text),  # JSON blob, profile attributes from join
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("tenant_scope", "role", "identifier", name="uq_identity_namespace"),
)

Index("ix_identities_role", _identities.c.role)


def _scope(tenant_id: str | None) -> str:
    return tenant_id or ""


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Identity entities.

    Usage:
        store = CredentialStore()
        identity = store.create("acme", "member", "alice@example.com", hasher.hash("Secr3t!"))
        store.find_by_identifier("acme", "member", "alice@example.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine: Engine = make_engine(db_url)
        self._clock = clock
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        tenant_id: str | None,
        role: str,
        identifier: str,
        credential_hash: str,
        attributes: dict | None = None,
    ) -> Identity:
        """Insert a new identity and return it.

        Raises DuplicateIdentity if (tenant, role, identifier) is taken. The
        UNIQUE constraint is the arbiter, so two concurrent joins for the same
        identifier cannot both succeed.
        """
        now = to_iso(self._clock())
        identity_id = uuid.uuid4().hex
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _identities.insert().values(
                        id=identity_id,
                        tenant_scope=_scope(tenant_id),
                        role=role,
                        identifier=identifier,
                        credential_hash=credential_hash,
                        status=IdentityStatus.active.value,
                        attributes=json.dumps(attributes or {}),
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            raise DuplicateIdentity() from exc
        logger.info("identity created id=%s role=%s", identity_id, role)
        return Identity(
            id=identity_id,
            tenant_id=tenant_id or None,
            role=role,
            identifier=identifier,
            credential_hash=credential_hash,
            status=IdentityStatus.active,
            attributes=dict(attributes or {}),
            created_at=now,
            updated_at=now,
        )

    def set_status(self, identity_id: str, status: IdentityStatus) -> Identity:
        """Flip an identity between active and disabled. Raises NotFound."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _identities.update()
                .where(_identities.c.id == identity_id)
                .values(status=IdentityStatus(status).value, updated_at=to_iso(self._clock()))
            )
        if result.rowcount == 0:
            raise NotFound()
        logger.info("identity status id=%s status=%s", identity_id, IdentityStatus(status).value)
        return self.find_by_id(identity_id)

    def update_credential(self, identity_id: str, credential_hash: str) -> None:
        """Replace the stored hash (password change or rehash on login). Raises NotFound."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _identities.update()
                .where(_identities.c.id == identity_id)
                .values(credential_hash=credential_hash, updated_at=to_iso(self._clock()))
            )
        if result.rowcount == 0:
            raise NotFound()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_identifier(self, tenant_id: str | None, role: str, identifier: str) -> Identity:
        """Exact (case-sensitive) lookup within one tenant + role namespace. Raises NotFound."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _identities.select().where(
                    (_identities.c.tenant_scope == _scope(tenant_id))
                    & (_identities.c.role == role)
                    & (_identities.c.identifier == identifier)
                )
            ).fetchone()
        if row is None:
            raise NotFound()
        return _row_to_identity(row)

    def find_by_id(self, identity_id: str) -> Identity:
        """Look up an identity by primary key. Raises NotFound."""
        with self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.id == identity_id)).fetchone()
        if row is None:
            raise NotFound()
        return _row_to_identity(row)

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_identities)).scalar() or 0

    def ping(self) -> bool:
        """Cheap liveness probe for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        tenant_id=row.tenant_scope or None,
        role=row.role,
        identifier=row.identifier,
        credential_hash=row.credential_hash,
        status=IdentityStatus(row.status),
        attributes=json.loads(row.attributes) if row.attributes else {},
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
