"""
auth/tokens.py -- Access/refresh token issuing and verification.

Security design decisions:
  JWT: python-jose with HS256. Each token class has its own signing key, so a
       compromised access key cannot forge refresh tokens and vice versa. The
       "type" claim is checked as well, which rejects a token presented in the
       wrong context even if the keys were ever configured identically.

  Claims: sub (account id, string per RFC 7519), email, role, type, iat, exp,
       and a random jti. The jti makes two tokens issued for the same account
       in the same second distinct, so revoking one never revokes the other.

  Access tokens: short-lived (15 minutes by default), never checked against
       the revocation ledger.

  Refresh tokens: long-lived (7 days by default), checked against the ledger
       on every verification.

  Keys are passed to the constructors. Nothing in this module reads settings
  or holds mutable module state.

Optional vs mandatory identity:
  try_authenticate()     -> TokenPayload | None, never raises.
  require_authenticate() -> TokenPayload, raises Unauthorized.
  require_role()         -> TokenPayload, raises Unauthorized or Forbidden.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.errors import Forbidden, InvalidToken, Revoked, Unauthorized
from auth.models import Role, TokenPair, TokenPayload, TokenType

if TYPE_CHECKING:
    from auth.revocation import RevocationLedger

logger = logging.getLogger("sessiongate.auth.tokens")

ALGORITHM = "HS256"
_BEARER_PREFIX = "Bearer "


class TokenIssuer:
    """Mint signed access and refresh tokens.

    Args:
        access_secret:  HS256 key for access tokens.
        refresh_secret: HS256 key for refresh tokens.
        access_ttl:     Access-token lifetime.
        refresh_ttl:    Refresh-token lifetime.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
    ) -> None:
        self._secrets = {TokenType.ACCESS: access_secret, TokenType.REFRESH: refresh_secret}
        self._ttls = {TokenType.ACCESS: access_ttl, TokenType.REFRESH: refresh_ttl}

    @property
    def access_ttl(self) -> timedelta:
        return self._ttls[TokenType.ACCESS]

    @property
    def refresh_ttl(self) -> timedelta:
        return self._ttls[TokenType.REFRESH]

    def _sign(self, payload: TokenPayload, token_type: TokenType) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": str(payload.account_id),
            "email": payload.email,
            "role": Role(payload.role).value,
            "type": token_type.value,
            "iat": now,
            "exp": now + self._ttls[token_type],
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self._secrets[token_type], algorithm=ALGORITHM)

    def issue_access_token(self, payload: TokenPayload) -> str:
        return self._sign(payload, TokenType.ACCESS)

    def issue_refresh_token(self, payload: TokenPayload) -> str:
        return self._sign(payload, TokenType.REFRESH)

    def issue_pair(self, account_id: int, email: str, role: Role = Role.USER) -> TokenPair:
        """Issue an access + refresh token for one identity.

        expires_in describes the access token only. Refresh-token staleness is
        carried by the refresh token's own exp claim.
        """
        payload = TokenPayload(account_id=account_id, email=email, role=Role(role))
        return TokenPair(
            access_token=self.issue_access_token(payload),
            refresh_token=self.issue_refresh_token(payload),
            expires_in=int(self.access_ttl.total_seconds()),
        )


class TokenVerifier:
    """Validate tokens and resolve identities from Authorization headers.

    Args:
        access_secret:  Key access tokens were signed with.
        refresh_secret: Key refresh tokens were signed with.
        ledger:         Revocation ledger consulted for refresh tokens. None
                        disables the revocation check entirely.
    """

    def __init__(self, access_secret: str, refresh_secret: str, ledger: RevocationLedger | None = None) -> None:
        self._secrets = {TokenType.ACCESS: access_secret, TokenType.REFRESH: refresh_secret}
        self.ledger = ledger

    def _decode(self, token: str, token_type: TokenType) -> TokenPayload:
        """Check signature, expiry, class tag and claim shape. Raises InvalidToken."""
        try:
            claims = jwt.decode(token, self._secrets[token_type], algorithms=[ALGORITHM])
        except JWTError as exc:
            logger.info("%s token rejected: %s", token_type.value, exc)
            raise InvalidToken() from exc

        if claims.get("type") != token_type.value:
            logger.info("Token with type %r presented as %s token", claims.get("type"), token_type.value)
            raise InvalidToken()

        subject = claims.get("sub")
        email = claims.get("email")
        if not subject or not email or not isinstance(email, str):
            raise InvalidToken()
        try:
            account_id = int(subject)
            role = Role(claims.get("role") or Role.USER.value)
        except ValueError as exc:
            raise InvalidToken() from exc
        return TokenPayload(account_id=account_id, email=email, role=role, token_type=token_type)

    def verify_access(self, token: str) -> TokenPayload:
        """Return the claims of a valid access token. Raises InvalidToken."""
        return self._decode(token, TokenType.ACCESS)

    def verify_refresh(self, token: str, check_revocation: bool = True) -> TokenPayload:
        """Return the claims of a valid, unrevoked refresh token.

        Raises InvalidToken for any signature/expiry/shape failure and Revoked
        when the ledger holds an entry for this token or ALL_SESSIONS.
        """
        payload = self._decode(token, TokenType.REFRESH)
        if check_revocation and self.ledger is not None and self.ledger.is_revoked(payload.account_id, token):
            logger.info("Revoked refresh token presented for account %s", payload.account_id)
            raise Revoked()
        return payload

    # ------------------------------------------------------------------
    # Authorization header helpers
    # ------------------------------------------------------------------

    @staticmethod
    def extract_bearer(authorization_header: str | None) -> str | None:
        """Return the token from 'Bearer <token>', or None if the header is absent/malformed."""
        if not authorization_header or not authorization_header.startswith(_BEARER_PREFIX):
            return None
        token = authorization_header[len(_BEARER_PREFIX) :].strip()
        return token or None

    def try_authenticate(self, authorization_header: str | None) -> TokenPayload | None:
        """Soft variant for optional-auth endpoints. Never raises."""
        token = self.extract_bearer(authorization_header)
        if token is None:
            return None
        try:
            return self.verify_access(token)
        except InvalidToken:
            return None

    def require_authenticate(self, authorization_header: str | None) -> TokenPayload:
        """Mandatory variant. Raises Unauthorized when no valid access token is present."""
        payload = self.try_authenticate(authorization_header)
        if payload is None:
            raise Unauthorized()
        return payload

    def require_role(self, authorization_header: str | None, role: Role) -> TokenPayload:
        """Require a valid access token whose role passes the gate for `role`."""
        return self.check_role(self.require_authenticate(authorization_header), role)

    @staticmethod
    def check_role(payload: TokenPayload, role: Role) -> TokenPayload:
        """Raise Forbidden unless the payload's role passes the gate for `role`."""
        if not payload.role.implies_access_to(Role(role)):
            raise Forbidden()
        return payload
