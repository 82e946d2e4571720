"""
api/routes/v1/admin.py -- Administrator-only account management endpoints.

Routes:
  GET    /api/v1/admin/users              -- list all accounts, newest first
  GET    /api/v1/admin/users/{id}         -- one account
  PATCH  /api/v1/admin/users/{id}/role    -- change role (last admin cannot be demoted)
  DELETE /api/v1/admin/users/{id}         -- hard delete (cascades to OTPs and ledger rows)
  GET    /api/v1/admin/stats              -- user counts
  GET    /api/v1/admin/otps               -- recent OTP metadata (codes never returned)

Every route passes the bearer token to AuthService, which enforces the admin
gate: 401 without a valid access token, 403 for any non-admin role.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from api.models import (
    AccountResponse,
    OtpListResponse,
    OtpRecordResponse,
    RoleUpdate,
    StatsResponse,
    UserListResponse,
)
from auth.dependencies import get_access_token, get_auth_service
from auth.service import AuthService

router = APIRouter()


@router.get("/admin/users", response_model=UserListResponse)
def list_users(
    access_token: str = Depends(get_access_token),
    service: AuthService = Depends(get_auth_service),
) -> UserListResponse:
    accounts = service.admin_list_users(access_token)
    return UserListResponse(users=[AccountResponse.from_account(a) for a in accounts], total=len(accounts))


@router.get("/admin/users/{user_id}", response_model=AccountResponse)
def get_user(
    user_id: int,
    access_token: str = Depends(get_access_token),
    service: AuthService = Depends(get_auth_service),
) -> AccountResponse:
    return AccountResponse.from_account(service.admin_get_user(access_token, user_id))


@router.patch("/admin/users/{user_id}/role", response_model=AccountResponse)
def set_role(
    user_id: int,
    body: RoleUpdate,
    access_token: str = Depends(get_access_token),
    service: AuthService = Depends(get_auth_service),
) -> AccountResponse:
    """Change an account's role. Existing access tokens keep their old role until they expire."""
    return AccountResponse.from_account(service.admin_set_role(access_token, user_id, body.role))


@router.delete("/admin/users/{user_id}", status_code=204)
def delete_user(
    user_id: int,
    access_token: str = Depends(get_access_token),
    service: AuthService = Depends(get_auth_service),
) -> Response:
    service.admin_delete_user(access_token, user_id)
    return Response(status_code=204)


@router.get("/admin/stats", response_model=StatsResponse)
def stats(
    access_token: str = Depends(get_access_token),
    service: AuthService = Depends(get_auth_service),
) -> StatsResponse:
    return StatsResponse(**service.admin_stats(access_token))


@router.get("/admin/otps", response_model=OtpListResponse)
def list_otps(
    limit: int = Query(100, ge=1, le=500),
    access_token: str = Depends(get_access_token),
    service: AuthService = Depends(get_auth_service),
) -> OtpListResponse:
    rows = service.admin_list_otps(access_token, limit)
    otps = [
        OtpRecordResponse(
            id=r["id"],
            user_id=r["user_id"],
            purpose=r["type"],
            created_at=r["created_at"],
            expires_at=r["expires_at"],
            username=r["username"],
            email=r["email"],
        )
        for r in rows
    ]
    return OtpListResponse(otps=otps, total=len(otps))
