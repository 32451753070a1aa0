"""
api/routes/users.py -- Self-service account endpoints.

Routes:
  GET /users/{user_id}            -- profile (self or admin)
  PUT /users/{user_id}            -- update name/phone (self or admin)
  PUT /users/{user_id}/password   -- change password, revokes every session (self or admin)

IDOR guard: every route compares the path id with the caller's token subject
via ensure_self_or_admin(). Changing a password also requires the current
password, even for admins.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from api.models import ChangePasswordRequest, UpdateUserRequest, UserProfile
from auth.dependencies import ensure_self_or_admin, get_auth_service, get_current_claims
from auth.models import Claims
from auth.service import AuthenticationService

router = APIRouter()


@router.get("/users/{user_id}", response_model=UserProfile)
def get_user(
    user_id: str,
    claims: Claims = Depends(get_current_claims),
    service: AuthenticationService = Depends(get_auth_service),
) -> UserProfile:
    ensure_self_or_admin(claims, user_id)
    return UserProfile.from_user(service.get_user(user_id))


@router.put("/users/{user_id}", response_model=UserProfile)
def update_user(
    user_id: str,
    body: UpdateUserRequest,
    claims: Claims = Depends(get_current_claims),
    service: AuthenticationService = Depends(get_auth_service),
) -> UserProfile:
    ensure_self_or_admin(claims, user_id)
    user = service.update_profile(
        user_id,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
    )
    return UserProfile.from_user(user)


@router.put("/users/{user_id}/password", status_code=204)
def change_password(
    user_id: str,
    body: ChangePasswordRequest,
    claims: Claims = Depends(get_current_claims),
    service: AuthenticationService = Depends(get_auth_service),
) -> Response:
    """Change the password and log the user out on every device.

    The token used for this call is revoked too; the client must log in again.
    """
    ensure_self_or_admin(claims, user_id)
    service.change_password(user_id, body.current_password, body.new_password)
    return Response(status_code=204)
