"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container). Stores and services do the work;
the only behaviour here is Role.implies_access_to(), which centralizes the
"admin satisfies every role gate" rule so callers never compare role strings.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# Token reference that revokes every refresh token of one account.
ALL_SESSIONS = "ALL_SESSIONS"


class Role(str, Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"

    def implies_access_to(self, required: Role) -> bool:
        """Return True if this role passes a gate that requires `required`."""
        return self is Role.ADMIN or self is required


class OtpPurpose(str, Enum):
    SIGNUP = "signup"
    PASSWORD_RESET = "password_reset"


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class Account:
    """A user identity record.

    password_hash is None for accounts provisioned by the external identity
    provider; password login stays unavailable for them until a reset.
    is_verified flips to True once the signup OTP is consumed (provider and
    admin-bootstrapped accounts start verified).
    """

    username: str
    email: str
    role: Role = Role.USER
    id: int | None = None
    password_hash: str | None = None
    is_verified: bool = False
    display_name: str | None = None
    picture_url: str | None = None
    created_at: str | None = None


@dataclass
class OneTimePasscode:
    user_id: int
    code: str
    purpose: OtpPurpose
    expires_at: str  # ISO 8601 UTC
    id: int | None = None
    created_at: str | None = None


@dataclass
class RevocationRecord:
    """A deny-list entry. token_ref is a SHA-256 hex digest or ALL_SESSIONS."""

    user_id: int
    token_ref: str
    expires_at: str  # ISO 8601 UTC
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class TokenPayload:
    """The claim set carried by both token classes."""

    account_id: int
    email: str
    role: Role = Role.USER
    token_type: TokenType = TokenType.ACCESS


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access-token lifetime in seconds


@dataclass(frozen=True)
class IdentityAssertion:
    """Identity returned by the external provider after a code exchange."""

    email: str
    display_name: str
    picture_url: str | None = None
