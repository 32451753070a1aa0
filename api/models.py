"""
API request and response models for the auth service REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two, and the
mapping never copies password_hash or key_hash.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.hashing import MAX_PASSWORD_BYTES, password_too_long
from auth.models import ApiKey, User, UserRole, UserStatus

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PHONE_PATTERN = r"^\+?[0-9][0-9 ()\-]{6,19}$"


def _check_password_bytes(value: str) -> str:
    """bcrypt only hashes the first 72 bytes; longer passwords are refused, not cut."""
    if password_too_long(value):
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    service: str = "auth-service"
    version: str


class ReadinessResponse(BaseModel):
    """Response for GET /ready. checks maps component name to healthy/unhealthy."""

    model_config = ConfigDict(frozen=True)

    status: str
    checks: dict[str, str]


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    # No str_strip_whitespace here: whitespace is part of a password.
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    role: Optional[UserRole] = None

    @field_validator("password")
    @classmethod
    def fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    remember_me: bool = False


class RefreshRequest(BaseModel):
    """Request body for POST /auth/refresh."""

    refresh_token: str = Field(min_length=1)


class ChangePasswordRequest(BaseModel):
    """Request body for PUT /users/{id}/password."""

    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class UpdateUserRequest(BaseModel):
    """Request body for PUT /users/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserProfile(BaseModel):
    """Public view of a User. password_hash is never part of it."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    phone: Optional[str]
    role: UserRole
    status: UserStatus
    email_verified: bool
    phone_verified: bool
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(
            id=user.id or "",
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            phone=user.phone,
            role=user.role,
            status=user.status,
            email_verified=user.email_verified,
            phone_verified=user.phone_verified,
            created_at=user.created_at or "",
        )


class LoginResponse(BaseModel):
    """Response for POST /auth/login and POST /auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserProfile


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


class ApiKeyCreate(BaseModel):
    """Request body for POST /api-keys and PUT /api-keys/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    scopes: list[str] = Field(default_factory=list, max_length=20)
    expires_at: Optional[datetime] = None

    @field_validator("expires_at")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Treat naive timestamps as UTC so they compare against aware ones."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class ApiKeyInfo(BaseModel):
    """An API key as listed to its owner. The key value is never included."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    scopes: list[str]
    last_used: Optional[str]
    expires_at: Optional[str]
    created_at: str

    @classmethod
    def from_key(cls, key: ApiKey) -> "ApiKeyInfo":
        return cls(
            id=key.id or "",
            name=key.name,
            scopes=key.scopes,
            last_used=key.last_used,
            expires_at=key.expires_at,
            created_at=key.created_at or "",
        )


class ApiKeyCreatedResponse(ApiKeyInfo):
    """Returned ONCE at creation -- includes the raw key value."""

    key: str
