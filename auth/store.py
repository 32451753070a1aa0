"""
auth/store.py -- SQLAlchemy Core persistence for users and API keys.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_user / _row_to_api_key are the mappers. Route and service code
never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Emails are lowercased before insert and lookup, so the UNIQUE index on
  users.email is effectively case-insensitive.

Sessions live in auth/sessions.py (SessionStore). Both stores share the
MetaData in auth/db.py and may point at the same database.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import uuid

from sqlalchemy import Boolean, Column, String, Table, Text, func, select, text
from sqlalchemy.engine import Engine

from auth.db import make_engine, metadata, now_iso
from auth.models import ApiKey, User, UserRole, UserStatus

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("phone", String(32)),
    Column("role", String(20), nullable=False, server_default="customer"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("phone_verified", Boolean, nullable=False, server_default="0"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_api_keys = Table(
    "api_keys",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("key_hash", Text, nullable=False),
    Column("name", String(100), nullable=False),
    Column("scopes", Text, nullable=False, server_default="[]"),  # JSON array
    Column("expires_at", String(32)),
    Column("last_used", String(32)),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and ApiKey entities.

    Usage:
        store = UserStore("sqlite:///bookmarket_auth.db")
        user_id = store.create_user(User(email="a@example.com", password_hash=h))
        user = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)

    def ping(self) -> None:
        """Raise if the database is unreachable. Used by GET /ready."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The service pre-checks, but a concurrent registration can still
        lose the race here, so callers must handle IntegrityError too.
        """
        user_id = str(uuid.uuid4())
        stamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email.lower(),
                    password_hash=user.password_hash,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    phone=user.phone,
                    role=UserRole(user.role).value,
                    status=UserStatus(user.status).value,
                    email_verified=user.email_verified,
                    phone_verified=user.phone_verified,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            conn.commit()
        return user_id

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable columns and stamp updated_at.

        Accepted fields: first_name, last_name, phone, password_hash, role,
        status. Returns True if a row was updated, False if user_id was not found.
        """
        if "role" in fields:
            fields["role"] = UserRole(fields["role"]).value
        if "status" in fields:
            fields["status"] = UserStatus(fields["status"]).value
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    def create_api_key(self, api_key: ApiKey) -> ApiKey:
        """Insert a key record and return it with id and created_at filled in."""
        key_id = str(uuid.uuid4())
        created_at = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _api_keys.insert().values(
                    id=key_id,
                    user_id=api_key.user_id,
                    key_hash=api_key.key_hash,
                    name=api_key.name,
                    scopes=json.dumps(api_key.scopes),
                    expires_at=api_key.expires_at,
                    created_at=created_at,
                )
            )
            conn.commit()
        return ApiKey(
            id=key_id,
            user_id=api_key.user_id,
            key_hash=api_key.key_hash,
            name=api_key.name,
            scopes=list(api_key.scopes),
            expires_at=api_key.expires_at,
            created_at=created_at,
        )

    def get_api_keys(self, user_id: str) -> list[ApiKey]:
        """Return all keys of a user, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _api_keys.select().where(_api_keys.c.user_id == user_id).order_by(_api_keys.c.created_at.desc())
            ).fetchall()
        return [_row_to_api_key(r) for r in rows]

    def count_api_keys(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_api_keys).where(_api_keys.c.user_id == user_id)
            ).scalar()
        return result or 0

    def get_api_key(self, key_id: str, user_id: str) -> ApiKey | None:
        """Look up a key by id. user_id is part of the WHERE clause [IDOR guard]."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _api_keys.select().where((_api_keys.c.id == key_id) & (_api_keys.c.user_id == user_id))
            ).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def update_api_key(
        self, key_id: str, user_id: str, name: str, scopes: list[str], expires_at: str | None
    ) -> ApiKey | None:
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.update()
                .where((_api_keys.c.id == key_id) & (_api_keys.c.user_id == user_id))
                .values(name=name, scopes=json.dumps(scopes), expires_at=expires_at)
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_api_key(key_id, user_id)

    def delete_api_key(self, key_id: str, user_id: str) -> bool:
        """Hard-delete a key. Both key_id and user_id must match [IDOR guard].

        Returns True if a key was deleted, False if not found or wrong owner.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.delete().where((_api_keys.c.id == key_id) & (_api_keys.c.user_id == user_id))
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        role=UserRole(row.role),
        status=UserStatus(row.status),
        email_verified=bool(row.email_verified),
        phone_verified=bool(row.phone_verified),
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_api_key(row) -> ApiKey:
    return ApiKey(
        id=row.id,
        user_id=row.user_id,
        key_hash=row.key_hash,
        name=row.name,
        scopes=json.loads(row.scopes or "[]"),
        expires_at=row.expires_at,
        last_used=row.last_used,
        created_at=row.created_at,
    )
