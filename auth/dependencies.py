"""
auth/dependencies.py -- FastAPI Depends() helpers for authenticated routes.

The gate middleware (api/main.py + auth/gate.py) has already verified the
bearer token and the session by the time a protected route runs, and left the
decoded Claims on request.state.claims. These helpers only read that result.

get_current_claims() raises Unauthorized if the gate did not run (public
path) or did not attach claims.
require_admin() additionally raises Forbidden for non-admin roles.
ensure_self_or_admin() is the ownership check for /users/{id} routes.

Layer rule: may import from fastapi (Request) because this module is part
of the dependency injection system; no imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import Forbidden, Unauthorized
from auth.models import Claims
from auth.service import AuthenticationService


def get_auth_service(request: Request) -> AuthenticationService:
    return request.app.state.auth_service


def get_current_claims(request: Request) -> Claims:
    """Require a gate-verified identity.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: Claims = Depends(get_current_claims)): ...
    """
    claims = getattr(request.state, "claims", None)
    if claims is None:
        raise Unauthorized()
    return claims


def require_admin(request: Request) -> Claims:
    claims = get_current_claims(request)
    if not claims.is_admin:
        raise Forbidden("Admin access required.")
    return claims


def ensure_self_or_admin(claims: Claims, user_id: str) -> None:
    """Raise Forbidden unless the caller is user_id or an admin [IDOR guard]."""
    if claims.sub != user_id and not claims.is_admin:
        raise Forbidden("You may only access your own account.")
