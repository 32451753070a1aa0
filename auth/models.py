"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial
predicates). Stores and the service do the work; the API layer maps these to
pydantic response models and never serializes password_hash or key_hash.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class UserRole(str, Enum):
    customer = "customer"
    vendor = "vendor"
    admin = "admin"


class UserStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


@dataclass
class User:
    """A marketplace identity.

    id is a UUID string assigned by UserStore.create_user(). email is unique
    (case-insensitive: stores lowercase it before insert and lookup).
    """

    email: str
    password_hash: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    role: UserRole = UserRole.customer
    status: UserStatus = UserStatus.active
    id: str | None = None
    email_verified: bool = False
    phone_verified: bool = False
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.active


@dataclass
class Session:
    """One authenticated client instance (one login on one device).

    id doubles as the jti of every token issued for this login. token_hash is
    an opaque random marker kept for auditing; it is not a verifiable secret
    and is never compared against anything.

    There is no status column. Expired and revoked sessions are both
    represented by the row being gone (or expires_at having passed).
    """

    id: str
    user_id: str
    token_hash: str
    expires_at: datetime
    user_agent: str | None = None
    ip_address: str | None = None
    created_at: str | None = None

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now


@dataclass
class ApiKey:
    """A long-lived credential, independent of login sessions.

    key_hash is bcrypt(raw_key). The raw key is returned once at creation
    and never persisted.
    """

    user_id: str
    name: str
    key_hash: str
    scopes: list[str] = field(default_factory=list)
    expires_at: str | None = None
    id: str | None = None
    last_used: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Claims:
    """Token payload. iat/exp are epoch seconds assigned at issue time."""

    sub: str
    email: str
    role: str
    jti: str
    iat: int = 0
    exp: int = 0

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin.value
