"""
api/routes/admin.py -- Account status transitions (admin only).

Routes:
  POST /admin/users/{user_id}/suspend   -- status=suspended, all sessions deleted
  POST /admin/users/{user_id}/activate  -- status=active

Suspension is an immediate global logout: tokens already in the wild stop
working at the gate because their sessions are gone, and new logins get 403.

[M4] An admin cannot suspend their own account (no recovery path without
DB access).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from auth.dependencies import get_auth_service, require_admin
from auth.errors import ValidationFailed
from auth.models import Claims
from auth.service import AuthenticationService

router = APIRouter()


@router.post("/admin/users/{user_id}/suspend", status_code=204)
def suspend_user(
    user_id: str,
    claims: Claims = Depends(require_admin),
    service: AuthenticationService = Depends(get_auth_service),
) -> Response:
    if user_id == claims.sub:
        raise ValidationFailed("You cannot suspend your own account.", code="self_suspension")
    service.suspend(user_id)
    return Response(status_code=204)


@router.post("/admin/users/{user_id}/activate", status_code=204)
def activate_user(
    user_id: str,
    claims: Claims = Depends(require_admin),
    service: AuthenticationService = Depends(get_auth_service),
) -> Response:
    service.activate(user_id)
    return Response(status_code=204)
