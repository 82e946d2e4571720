"""
auth/revocation.py -- Deny-list of refresh tokens.

Tokens are stateless and cannot be withdrawn by signature alone, so logout
writes a ledger entry that refresh-token verification consults. Access tokens
are never checked here: their short lifetime is their only revocation
mechanism, which keeps the ledger off the per-request path.

Entries store SHA-256(token) rather than the token itself. A database leak
then yields nothing that can be replayed.

An entry whose token_ref is ALL_SESSIONS revokes every refresh token of the
account until the entry itself expires.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import ALL_SESSIONS, RevocationRecord
from auth.store import AccountStore, isoformat, utcnow

logger = logging.getLogger("sessiongate.auth.revocation")


def token_reference(token: str) -> str:
    """Return the ledger key for a refresh token (SHA-256 hex digest)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _remaining_lifetime(token: str) -> timedelta:
    """Return how long the token could still be presented, from its own exp claim.

    Reads claims without verifying the signature; only callers that already
    verified the token reach the ledger.
    """
    try:
        exp = jwt.get_unverified_claims(token).get("exp")
    except JWTError:
        return timedelta(0)
    if not isinstance(exp, (int, float)):
        return timedelta(0)
    return max(datetime.fromtimestamp(exp, tz=timezone.utc) - utcnow(), timedelta(0))


class RevocationLedger:
    """Persisted record of invalidated refresh tokens.

    Args:
        store:       Persistence for revocation rows.
        default_ttl: Entry lifetime when the caller passes none. Must be at
                     least the refresh-token lifetime so an entry never lapses
                     before the token it targets.
    """

    def __init__(self, store: AccountStore, default_ttl: timedelta) -> None:
        self.store = store
        self.default_ttl = default_ttl

    def revoke(self, account_id: int, token: str, ttl: timedelta | None = None) -> None:
        """Deny-list one refresh token for at least as long as it stays valid."""
        window = max(ttl or self.default_ttl, _remaining_lifetime(token))
        self.store.insert_revocation(
            RevocationRecord(
                user_id=account_id,
                token_ref=token_reference(token),
                expires_at=isoformat(utcnow() + window),
            )
        )
        logger.info("Revoked one refresh token for account %s", account_id)

    def claim(self, account_id: int, token: str, ttl: timedelta | None = None) -> bool:
        """Revoke the token only if nothing revokes it yet.

        Returns False when an unexpired entry (or ALL_SESSIONS) already covers
        it, which makes a refresh token single-use under concurrent rotation.
        """
        window = max(ttl or self.default_ttl, _remaining_lifetime(token))
        claimed = self.store.claim_revocation(
            RevocationRecord(
                user_id=account_id,
                token_ref=token_reference(token),
                expires_at=isoformat(utcnow() + window),
            ),
            utcnow(),
        )
        if claimed:
            logger.info("Rotated out one refresh token for account %s", account_id)
        return claimed

    def revoke_all(self, account_id: int, ttl: timedelta | None = None) -> None:
        """Deny-list every refresh token of the account via the ALL_SESSIONS sentinel."""
        self.store.insert_revocation(
            RevocationRecord(
                user_id=account_id,
                token_ref=ALL_SESSIONS,
                expires_at=isoformat(utcnow() + (ttl or self.default_ttl)),
            )
        )
        logger.info("Revoked all refresh tokens for account %s", account_id)

    def is_revoked(self, account_id: int, token: str) -> bool:
        record = self.store.find_active_revocation(account_id, (token_reference(token), ALL_SESSIONS), utcnow())
        return record is not None

    def purge_expired(self) -> int:
        """Delete entries whose window has closed. Returns the number removed."""
        return self.store.purge_expired_revocations(utcnow())
