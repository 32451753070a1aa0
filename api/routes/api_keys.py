"""
api/routes/api_keys.py -- API key management for the authenticated user.

Routes:
  GET  /api-keys                -- list caller's keys (values never returned)
  POST /api-keys                -- create a key; the raw value is in this response ONLY
  GET  /api-keys/{key_id}       -- one key
  PUT  /api-keys/{key_id}       -- rename / rescope / change expiry
  POST /api-keys/{key_id}/revoke -- delete the key

Keys belong to the token subject. Every store query includes the caller's
user id, so a key id belonging to someone else is indistinguishable from a
missing one (404) [IDOR guard]. API keys are independent of login sessions:
logout and password changes do not touch them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from api.models import ApiKeyCreate, ApiKeyCreatedResponse, ApiKeyInfo
from auth.dependencies import get_auth_service, get_current_claims
from auth.models import Claims
from auth.service import AuthenticationService

router = APIRouter()


@router.get("/api-keys", response_model=list[ApiKeyInfo])
def list_keys(
    claims: Claims = Depends(get_current_claims),
    service: AuthenticationService = Depends(get_auth_service),
) -> list[ApiKeyInfo]:
    return [ApiKeyInfo.from_key(k) for k in service.list_api_keys(claims.sub)]


@router.post("/api-keys", response_model=ApiKeyCreatedResponse, status_code=201)
def create_key(
    body: ApiKeyCreate,
    claims: Claims = Depends(get_current_claims),
    service: AuthenticationService = Depends(get_auth_service),
) -> ApiKeyCreatedResponse:
    """Generate a new API key. The raw key is shown ONCE and never stored."""
    record, raw_key = service.create_api_key(claims.sub, body.name, body.scopes, body.expires_at)
    return ApiKeyCreatedResponse(**ApiKeyInfo.from_key(record).model_dump(), key=raw_key)


@router.get("/api-keys/{key_id}", response_model=ApiKeyInfo)
def get_key(
    key_id: str,
    claims: Claims = Depends(get_current_claims),
    service: AuthenticationService = Depends(get_auth_service),
) -> ApiKeyInfo:
    return ApiKeyInfo.from_key(service.get_api_key(claims.sub, key_id))


@router.put("/api-keys/{key_id}", response_model=ApiKeyInfo)
def update_key(
    key_id: str,
    body: ApiKeyCreate,
    claims: Claims = Depends(get_current_claims),
    service: AuthenticationService = Depends(get_auth_service),
) -> ApiKeyInfo:
    key = service.update_api_key(claims.sub, key_id, body.name, body.scopes, body.expires_at)
    return ApiKeyInfo.from_key(key)


@router.post("/api-keys/{key_id}/revoke", status_code=204)
def revoke_key(
    key_id: str,
    claims: Claims = Depends(get_current_claims),
    service: AuthenticationService = Depends(get_auth_service),
) -> Response:
    service.revoke_api_key(claims.sub, key_id)
    return Response(status_code=204)
