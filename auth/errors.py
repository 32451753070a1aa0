"""
auth/errors.py -- Error taxonomy for the auth service.

Every failure that can reach an HTTP caller is one of six AuthError
subclasses. Each carries a stable machine-readable code, the HTTP status the
API layer renders it with, and a human message. The set is closed: callers
match on these classes and nothing else.

Lower layers raise their own typed failures:
  TokenError    (auth/tokens.py)  -- MalformedToken, InvalidSignature, TokenExpired
  HashingError  (auth/hashing.py) -- bcrypt failures
  SQLAlchemyError                 -- store failures

They are converted by the explicit from_*() functions below. There are no
implicit conversions: a service method that lets a lower-level exception
escape without calling one of these is a bug.

Unauthorized deliberately has one public message. Callers cannot tell an
expired token from a revoked session or a forged signature [leak guard].

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

logger = logging.getLogger("bookmarket.auth.errors")


class AuthError(Exception):
    """Base class for caller-visible failures."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)


class Unauthorized(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "Access forbidden."


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists."


class ValidationFailed(AuthError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid input."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class InternalFailure(AuthError):
    status_code = 500
    code = "internal_error"
    default_message = "An unexpected error occurred."


# ---------------------------------------------------------------------------
# Explicit mappings from lower-layer failures
# ---------------------------------------------------------------------------


def from_token_error(exc: Exception) -> Unauthorized:
    """Any token failure becomes the single generic Unauthorized."""
    logger.info("Token rejected: %s", type(exc).__name__)
    return Unauthorized()


def from_hashing_error(exc: Exception) -> InternalFailure:
    logger.error("Credential hashing failed: %s", exc)
    return InternalFailure()


def from_store_error(exc: Exception) -> InternalFailure:
    """Store failures are logged with detail and reported generically."""
    logger.error("Store operation failed: %s", exc, exc_info=exc)
    return InternalFailure()
