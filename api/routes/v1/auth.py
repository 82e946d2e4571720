"""
api/routes/v1/auth.py -- Credential and session REST endpoints.

Routes:
  POST /api/v1/auth/signup            -- create account, email signup OTP; 201, no tokens
  POST /api/v1/auth/verify-otp        -- consume signup OTP; returns tokens + account
  POST /api/v1/auth/resend-otp        -- send a fresh signup OTP (always 200)
  POST /api/v1/auth/login             -- password login; returns tokens + account
  POST /api/v1/auth/refresh           -- exchange refresh token for a new pair
  POST /api/v1/auth/logout            -- revoke one refresh token (requires auth)
  POST /api/v1/auth/logout/all        -- revoke every refresh token (requires auth)
  POST /api/v1/auth/password/forgot   -- email a reset OTP (always 200)
  POST /api/v1/auth/password/reset    -- consume reset OTP, set new password
  GET  /api/v1/auth/me                -- current account (requires auth)
  GET  /api/v1/auth/providers         -- configured identity providers (public)
  GET  /api/v1/auth/google            -- redirect to Google
  GET  /api/v1/auth/google/callback   -- code exchange; returns tokens + account

Security:
  [H2] login, signup and the OTP endpoints are rate-limited per IP.
  [C1] AuthService.login() equalizes timing for unknown emails.
  [E1] Wrong password and unknown email return the same 401 body.
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import (
    AccountResponse,
    EmailRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    OAuthProviderInfo,
    RefreshRequest,
    RefreshResponse,
    ResetPasswordRequest,
    SessionResponse,
    SignupRequest,
    SignupResponse,
    TokenResponse,
    VerifyOtpRequest,
)
from auth.dependencies import get_access_token, get_auth_service
from auth.errors import NotFound, Unauthorized
from auth.oauth import GOOGLE, get_enabled_providers, identity_from_token
from auth.service import AuthService
from core.config import get_settings

logger = logging.getLogger("sessiongate.api.auth")

_settings = get_settings()

# Auth policy:
# - signup, verify-otp, resend-otp, login, refresh, password/*: public
# - providers, google, google/callback: public
# - logout, logout/all, me: require a bearer access token
router = APIRouter()


def _no_store(model: BaseModel, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=model.model_dump(mode="json"))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _session(pair, account) -> SessionResponse:
    return SessionResponse(tokens=TokenResponse.from_pair(pair), account=AccountResponse.from_account(account))


# ---------------------------------------------------------------------------
# Signup and verification
# ---------------------------------------------------------------------------


@limiter.limit(_settings.signup_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signup", response_model=SignupResponse, status_code=201)
def signup(request: Request, body: SignupRequest, service: AuthService = Depends(get_auth_service)) -> SignupResponse:
    """Create an account pending email verification. A signup OTP is emailed; no tokens yet."""
    account = service.signup(body.username, body.email, body.password)
    return SignupResponse(
        message="Account created. Check your email for a verification code.",
        account=AccountResponse.from_account(account),
    )


@limiter.limit(_settings.otp_rate_limit)
@router.post("/auth/verify-otp", response_model=SessionResponse)
def verify_otp(
    request: Request, body: VerifyOtpRequest, service: AuthService = Depends(get_auth_service)
) -> JSONResponse:
    """Consume the signup OTP and open the first session."""
    pair, account = service.verify_otp(body.email, body.otp)
    return _no_store(_session(pair, account))


@limiter.limit(_settings.otp_rate_limit)
@router.post("/auth/resend-otp", response_model=MessageResponse)
def resend_otp(request: Request, body: EmailRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Send a fresh signup OTP. The response never reveals whether the account exists."""
    service.resend_verification(body.email)
    return MessageResponse(message="If the account is awaiting verification, a new code has been sent.")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/login", response_model=SessionResponse)
def login(request: Request, body: LoginRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Authenticate with email and password [C1] [E1]."""
    pair, account = service.login(body.email, body.password)
    return _no_store(_session(pair, account))


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(body: RefreshRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Exchange a valid refresh token for a new token pair."""
    pair = service.refresh(body.refresh_token)
    return _no_store(RefreshResponse(tokens=TokenResponse.from_pair(pair)))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    body: LogoutRequest,
    access_token: str = Depends(get_access_token),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke the supplied refresh token. The access token stays valid until it expires."""
    service.logout(access_token, body.refresh_token)
    return MessageResponse(message="Logged out successfully.")


@router.post("/auth/logout/all", response_model=MessageResponse)
def logout_all(
    access_token: str = Depends(get_access_token),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke every refresh token of the caller."""
    service.logout_all(access_token)
    return MessageResponse(message="All sessions logged out successfully.")


@router.get("/auth/me", response_model=AccountResponse)
def me(
    access_token: str = Depends(get_access_token),
    service: AuthService = Depends(get_auth_service),
) -> AccountResponse:
    """Return the account behind the current access token."""
    return AccountResponse.from_account(service.me(access_token))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(_settings.otp_rate_limit)
@router.post("/auth/password/forgot", response_model=MessageResponse)
def forgot_password(
    request: Request, body: EmailRequest, service: AuthService = Depends(get_auth_service)
) -> MessageResponse:
    """Email a password-reset OTP. Always 200, whether or not the email is registered."""
    service.request_password_reset(body.email)
    return MessageResponse(message="If the email exists, a password reset OTP has been sent.")


@limiter.limit(_settings.otp_rate_limit)
@router.post("/auth/password/reset", response_model=MessageResponse)
def reset_password(
    request: Request, body: ResetPasswordRequest, service: AuthService = Depends(get_auth_service)
) -> MessageResponse:
    """Set a new password with a reset OTP. No tokens are issued; log in again afterwards."""
    service.reset_password(body.email, body.otp, body.new_password)
    return MessageResponse(message="Password reset successfully.")


# ---------------------------------------------------------------------------
# External identity provider
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured identity providers. Empty list when none is set up."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


def _google_client(request: Request):
    client = request.app.state.oauth.create_client(GOOGLE)
    if client is None:
        raise NotFound("Identity provider is not configured.")
    return client


@router.get("/auth/google")
async def google_login(request: Request):
    """Redirect the browser to Google's consent screen."""
    client = _google_client(request)
    redirect_uri = str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/google/callback", name="google_callback", response_model=SessionResponse)
async def google_callback(request: Request) -> JSONResponse:
    """Exchange the authorization code and open a session, provisioning on first sight [H1]."""
    client = _google_client(request)
    try:
        token = await client.authorize_access_token(request)
        assertion = identity_from_token(token)
    except (OAuthError, ValueError) as exc:
        logger.warning("Identity provider login failed: %s", exc)
        raise Unauthorized("Identity provider login failed.", code="oauth_failed") from exc

    service: AuthService = request.app.state.auth_service
    pair, account = await run_in_threadpool(service.federated_login, assertion)
    return _no_store(_session(pair, account))
