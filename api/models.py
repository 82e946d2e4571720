"""
API request and response models for SessionGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request validation happens here (email shape, password length, OTP format),
so AuthService only ever sees schema-valid input.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Account, Role, TokenPair
from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
OTP_PATTERN = r"^\d{6}$"

# bcrypt rejects input beyond 72 bytes. The character cap alone does not
# bound multi-byte passwords, so new passwords also get a byte check.
PASSWORD_MAX = 72


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=64)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)
    password: str = Field(min_length=8, max_length=PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class VerifyOtpRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)
    otp: str = Field(pattern=OTP_PATTERN)


class EmailRequest(BaseModel):
    """Body for POST /auth/resend-otp and POST /auth/password/forgot."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)


class LoginRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)
    otp: str = Field(pattern=OTP_PATTERN)
    new_password: str = Field(min_length=8, max_length=PASSWORD_MAX)

    @field_validator("new_password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class RoleUpdate(BaseModel):
    """Body for PATCH /admin/users/{id}/role."""

    role: Role


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. The password hash never leaves the store."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: Role
    is_verified: bool
    display_name: Optional[str] = None
    picture_url: Optional[str] = None
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            role=account.role,
            is_verified=account.is_verified,
            display_name=account.display_name,
            picture_url=account.picture_url,
            created_at=account.created_at or "",
        )


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # access-token lifetime in seconds

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenResponse":
        return cls(access_token=pair.access_token, refresh_token=pair.refresh_token, expires_in=pair.expires_in)


class SessionResponse(BaseModel):
    """Returned by verify-otp, login, and the identity-provider callback."""

    model_config = ConfigDict(frozen=True)

    tokens: TokenResponse
    account: AccountResponse


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    tokens: TokenResponse


class SignupResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    account: AccountResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[AccountResponse]
    total: int


class StatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_users: int
    users_by_role: dict[str, int]
    recent_registrations: int  # accounts created in the last 7 days


class OtpRecordResponse(BaseModel):
    """OTP metadata for the admin view. The code itself is never included."""

    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    purpose: str
    created_at: str
    expires_at: str
    username: str
    email: str


class OtpListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    otps: list[OtpRecordResponse]
    total: int


class OAuthProviderInfo(BaseModel):
    name: str
    label: str


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
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
