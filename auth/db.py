"""
auth/db.py -- Engine construction and timestamp helpers shared by the auth stores.

Each store (CredentialStore, RefreshLedger, SecurityEventLog) owns its own
tables and its own Engine; they may point at the same database URL.

Timestamps are stored as fixed-width UTC ISO 8601 strings
("2026-01-02T03:04:05.000006+00:00"). The fixed width matters: the ledger
compares expires_at against "now" inside SQL WHERE clauses, and only a
constant-width representation orders lexicographically the same way it
orders chronologically.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # Connections are shared across the FastAPI threadpool.
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 15
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def utcnow() -> datetime:
    """Timezone-aware UTC clock. The default clock for every auth component."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
