"""
auth/audit.py -- Persisted security event trail.

Every join, login (successful or not), refresh, reuse detection, logout and
status change is written to the security_events table and mirrored to the
"rolegate.audit" logger. Events reference identities and token ids only;
identifiers, credentials and bearer secrets are never recorded.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from auth.db import make_engine, to_iso, utcnow
from auth.models import SecurityEvent

logger = logging.getLogger("rolegate.audit")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'rolegate.db'}"

JOIN = "join"
LOGIN = "login"
LOGIN_FAILED = "login_failed"
REFRESH = "refresh"
REFRESH_REUSE = "refresh_reuse_detected"
REFRESH_REVOKED = "refresh_revoked"
REFRESH_DISABLED = "refresh_disabled_identity"
LOGOUT = "logout"
LOGOUT_ALL = "logout_all"
STATUS_CHANGED = "status_changed"

# Events that indicate a possible compromise are logged at WARNING.
_WARNING_EVENTS = {LOGIN_FAILED, REFRESH_REUSE, REFRESH_DISABLED}

_metadata = MetaData()

_security_events = Table(
    "security_events",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_type", String(40), nullable=False),
    Column("identity_id", String(32)),
    Column("tenant_id", String(64)),
    Column("role", String(64)),
    Column("token_id", String(32)),
    Column("detail", Text),
    Column("occurred_at", String(32), nullable=False),
)


class SecurityEventLog:
    def __init__(self, db_url: str = _DEFAULT_DB_URL, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine: Engine = make_engine(db_url)
        self._clock = clock
        _metadata.create_all(self.engine)

    def record(
        self,
        event_type: str,
        *,
        identity_id: str | None = None,
        tenant_id: str | None = None,
        role: str | None = None,
        token_id: str | None = None,
        detail: str | None = None,
    ) -> SecurityEvent:
        event = SecurityEvent(
            event_type=event_type,
            occurred_at=to_iso(self._clock()),
            identity_id=identity_id,
            tenant_id=tenant_id,
            role=role,
            token_id=token_id,
            detail=detail,
        )
        with self.engine.begin() as conn:
            result = conn.execute(
                _security_events.insert().values(
                    event_type=event.event_type,
                    identity_id=event.identity_id,
                    tenant_id=event.tenant_id,
                    role=event.role,
                    token_id=event.token_id,
                    detail=event.detail,
                    occurred_at=event.occurred_at,
                )
            )
        event.id = result.inserted_primary_key[0]
        level = logging.WARNING if event_type in _WARNING_EVENTS else logging.INFO
        logger.log(
            level,
            "%s identity=%s tenant=%s role=%s token=%s",
            event_type,
            identity_id or "-",
            tenant_id or "-",
            role or "-",
            token_id or "-",
        )
        return event

    def recent(
        self, limit: int = 100, identity_id: str | None = None, event_type: str | None = None
    ) -> list[SecurityEvent]:
        """Newest events first, optionally filtered by identity and type."""
        query = _security_events.select()
        if identity_id is not None:
            query = query.where(_security_events.c.identity_id == identity_id)
        if event_type is not None:
            query = query.where(_security_events.c.event_type == event_type)
        query = query.order_by(_security_events.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_event(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def _row_to_event(row) -> SecurityEvent:
    return SecurityEvent(
        id=row.id,
        event_type=row.event_type,
        identity_id=row.identity_id,
        tenant_id=row.tenant_id,
        role=row.role,
        token_id=row.token_id,
        detail=row.detail,
        occurred_at=row.occurred_at,
    )
