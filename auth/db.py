"""
auth/db.py -- Shared SQLAlchemy plumbing for the auth stores.

UserStore (auth/store.py) and SessionStore (auth/sessions.py) register their
tables on the one MetaData defined here and build engines with make_engine(),
so both point at the same schema whether they share a database URL or not.

Timestamps are TEXT in fixed-width ISO 8601 UTC with microsecond precision
("2026-01-01T00:00:00.000000+00:00"). Fixed width means plain string
comparison in SQL matches chronological order, which the session expiry
sweep and the active-session count rely on. datetime.isoformat() without
timespec drops the fraction when it is zero and would break that.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine

metadata = MetaData()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block on the writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # TestClient and the Starlette threadpool use the engine from many threads.
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(now_utc())


def from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
