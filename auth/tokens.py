"""
auth/tokens.py -- Signed bearer tokens (JWT, HS256 via python-jose).

Tokens carry sub (user id), email, role, iat, exp, and jti. The jti is the id
of the server-side session that authorized the token: a valid signature is
necessary but not sufficient, the session must also be live (auth/gate.py).

Access and refresh tokens have the same shape and differ only in lifetime.
Both tokens of a pair share one jti, so deleting that session rejects both.

Failure contract of verify_token():
  MalformedToken    -- not three segments, bad base64/JSON, missing claims
  InvalidSignature  -- tampered payload or wrong key
  TokenExpired      -- correctly signed but now > exp

The signature is checked before exp, so a correctly signed expired token is
reported as TokenExpired and never as InvalidSignature. python-jose raises
JWTError for both malformed input and a bad signature; we probe the structure
with the unverified accessors first so the two can be told apart.

Layer rule: no imports from api/ or core/. The secret is passed in by the
caller (AuthenticationService / gate) rather than read from settings here.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.models import Claims

ALGORITHM = "HS256"

_REQUIRED_CLAIMS = ("sub", "email", "role", "iat", "exp", "jti")


class TokenError(Exception):
    """Base class for token verification failures."""


class MalformedToken(TokenError):
    pass


class InvalidSignature(TokenError):
    pass


class TokenExpired(TokenError):
    pass


def issue_token(claims: Claims, ttl_seconds: int, secret: str, now: datetime | None = None) -> str:
    """Sign claims with iat=now and exp=now+ttl_seconds.

    The iat/exp values already on `claims` are ignored. `now` exists so tests
    can mint tokens that are already expired.
    """
    if ttl_seconds <= 0:
        raise ValueError("ttl_seconds must be positive")
    issued = now or datetime.now(timezone.utc)
    expires = issued + timedelta(seconds=ttl_seconds)
    payload = {
        "sub": claims.sub,
        "email": claims.email,
        "role": claims.role,
        "iat": int(issued.timestamp()),
        "exp": int(expires.timestamp()),
        "jti": claims.jti,
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def verify_token(token: str, secret: str) -> Claims:
    """Verify signature and expiry, return the decoded Claims."""
    try:
        header = jwt.get_unverified_header(token)
        jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise MalformedToken(str(exc)) from exc
    if header.get("alg") != ALGORITHM:
        raise InvalidSignature(f"unexpected algorithm {header.get('alg')!r}")

    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired(str(exc)) from exc
    except JWTClaimsError as exc:
        raise MalformedToken(str(exc)) from exc
    except JWTError as exc:
        raise InvalidSignature(str(exc)) from exc

    missing = [name for name in _REQUIRED_CLAIMS if name not in payload]
    if missing:
        raise MalformedToken(f"missing claims: {', '.join(missing)}")
    try:
        return Claims(
            sub=str(payload["sub"]),
            email=str(payload["email"]),
            role=str(payload["role"]),
            jti=str(payload["jti"]),
            iat=int(payload["iat"]),
            exp=int(payload["exp"]),
        )
    except (TypeError, ValueError) as exc:
        raise MalformedToken(str(exc)) from exc


def extract_bearer(header: str | None) -> str | None:
    """Return the token from an `Authorization: Bearer <token>` header, else None."""
    if not header or not header.startswith("Bearer "):
        return None
    token = header[7:].strip()
    return token or None
