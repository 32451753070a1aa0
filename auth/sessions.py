"""
auth/sessions.py -- Authoritative store of live login sessions.

A session row is the single source of truth for revocation. Tokens name their
session in the jti claim; deleting the row rejects every token bound to it,
regardless of the tokens' own exp.

Lifecycle:
  create()              -- on login
  delete()              -- on logout (idempotent)
  delete_all_for_user() -- on password change and suspension (one bulk DELETE)
  sweep_expired()       -- out of band: `python main.py sweep-sessions` from
                           cron, or the optional lifespan loop in api/main.py.
                           Request handlers never call it.

No in-process locking. Every operation is a single statement keyed by id or
user_id; a lookup racing a revoke sees the row or does not, and both outcomes
are correct. Expiry is re-checked against "now" at lookup time, so a late
sweep only delays storage reclamation.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import Column, String, Table, Text, func, select, text
from sqlalchemy.engine import Engine

from auth.db import from_iso, make_engine, metadata, now_iso, now_utc, to_iso
from auth.models import Session

logger = logging.getLogger("bookmarket.auth.sessions")

_sessions = Table(
    "sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("user_agent", Text),
    Column("ip_address", String(64)),
    Column("created_at", String(32), nullable=False),
)


class SessionStore:
    """Repository for Session rows.

    access_ttl / refresh_ttl are the token lifetimes in seconds. A normal
    login lives for 2 x access_ttl; a remember-me login lives as long as its
    refresh token.
    """

    def __init__(self, db_url: str, access_ttl: int, refresh_ttl: int) -> None:
        self.engine: Engine = make_engine(db_url)
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def create(
        self,
        user_id: str,
        user_agent: str | None = None,
        ip_address: str | None = None,
        remember_me: bool = False,
        now: datetime | None = None,
    ) -> Session:
        lifetime = self.refresh_ttl if remember_me else 2 * self.access_ttl
        created = now or now_utc()
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token_hash=uuid.uuid4().hex,
            expires_at=created + timedelta(seconds=lifetime),
            user_agent=user_agent,
            ip_address=ip_address,
            created_at=to_iso(created),
        )
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    token_hash=session.token_hash,
                    expires_at=to_iso(session.expires_at),
                    user_agent=session.user_agent,
                    ip_address=session.ip_address,
                    created_at=session.created_at,
                )
            )
            conn.commit()
        return session

    def get(self, session_id: str) -> Session | None:
        """Return the session row or None. Does not check expiry."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_live(self, session_id: str, now: datetime | None = None) -> Session | None:
        """Return the session only if it exists and expires_at > now."""
        session = self.get(session_id)
        if session is None or not session.is_live(now or now_utc()):
            return None
        return session

    def list_for_user(self, user_id: str) -> list[Session]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.created_at)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def delete(self, session_id: str) -> bool:
        """Delete one session. Idempotent; returns False if it was already gone."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()
        return result.rowcount > 0

    def delete_all_for_user(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Delete every session whose expires_at is in the past. Returns rows removed."""
        cutoff = to_iso(now) if now is not None else now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at < cutoff))
            conn.commit()
        if result.rowcount:
            logger.info("Swept %d expired sessions", result.rowcount)
        return result.rowcount

    def count_active(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_sessions).where(_sessions.c.expires_at > now_iso())
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=from_iso(row.expires_at),
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        created_at=row.created_at,
    )
