"""
auth/gate.py -- Request gate decision: Allow(claims) or Reject(reason).

The decision is a plain function so it can be tested without a transport.
The only I/O is the explicit session lookup through the SessionStore that
is passed in. api/main.py wires it as HTTP middleware:

    public path        -> pass through untouched
    Allow(claims)      -> request.state.claims = claims, continue
    Reject(reason)     -> 401 "unauthorized"; reason is logged, never returned

Reject reasons exist for logs and tests only. Externally every rejection is
the same 401 so callers cannot distinguish an expired token from a revoked
session or a bad signature.

This is a single linear guard: each check either terminates with Reject or
falls through to the next.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from auth.db import now_utc
from auth.models import Claims
from auth.sessions import SessionStore
from auth.tokens import InvalidSignature, MalformedToken, TokenExpired, extract_bearer, verify_token

PUBLIC_PATHS = frozenset({"/health", "/ready", "/metrics"})
PUBLIC_PREFIXES = ("/auth/register", "/auth/login", "/auth/verify", "/auth/refresh")


@dataclass(frozen=True)
class Allow:
    claims: Claims


@dataclass(frozen=True)
class Reject:
    reason: str


GateDecision = Union[Allow, Reject]


def is_public(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


def evaluate(
    authorization: Optional[str],
    secret: str,
    sessions: SessionStore,
    now: Optional[datetime] = None,
) -> GateDecision:
    """Decide whether a request bearing `authorization` may proceed."""
    token = extract_bearer(authorization)
    if token is None:
        return Reject("missing_bearer")

    try:
        claims = verify_token(token, secret)
    except MalformedToken:
        return Reject("malformed_token")
    except InvalidSignature:
        return Reject("invalid_signature")
    except TokenExpired:
        return Reject("token_expired")

    session = sessions.get(claims.jti)
    if session is None:
        return Reject("session_not_found")
    if session.user_id != claims.sub:
        return Reject("session_mismatch")
    if not session.is_live(now or now_utc()):
        return Reject("session_expired")
    return Allow(claims)
