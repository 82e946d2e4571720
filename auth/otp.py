"""
auth/otp.py -- One-time passcode generation, persistence, and consumption.

A code is a bearer credential for account verification and password reset,
so it comes from the secrets CSPRNG, never from random. Codes are bound to
one account and one purpose, expire after a purpose-specific window, and are
deleted on first successful use.

Layer rule: no imports from api/ or notify/. Delivery of the code is the
caller's job (AuthService hands it to the notification sink).
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from auth.errors import InvalidOrExpiredOtp
from auth.models import Account, OneTimePasscode, OtpPurpose
from auth.store import AccountStore, isoformat, utcnow

logger = logging.getLogger("sessiongate.auth.otp")

OTP_LENGTH = 6
_OTP_LOW = 10 ** (OTP_LENGTH - 1)  # 100000
_OTP_SPAN = 9 * _OTP_LOW  # 900000 values: 100000-999999


def generate_otp() -> str:
    """Return a uniformly random 6-digit code in the range 100000-999999."""
    return str(_OTP_LOW + secrets.randbelow(_OTP_SPAN))


class OtpService:
    """Issue and consume purpose-tagged one-time passcodes.

    Args:
        store: Persistence for OTP rows.
        ttls:  Lifetime per purpose. Purposes missing from the mapping fall
               back to 30 minutes.
    """

    _DEFAULT_TTL = timedelta(minutes=30)

    def __init__(self, store: AccountStore, ttls: dict[OtpPurpose, timedelta] | None = None) -> None:
        self.store = store
        self.ttls = dict(ttls or {})

    def ttl_for(self, purpose: OtpPurpose) -> timedelta:
        return self.ttls.get(OtpPurpose(purpose), self._DEFAULT_TTL)

    def issue(self, account_id: int, purpose: OtpPurpose) -> str:
        """Persist a fresh code for (account_id, purpose) and return it for delivery.

        Earlier outstanding codes are left in place; each one stays usable
        until it expires or is consumed.
        """
        purpose = OtpPurpose(purpose)
        code = generate_otp()
        expires_at = utcnow() + self.ttl_for(purpose)
        self.store.insert_otp(
            OneTimePasscode(user_id=account_id, code=code, purpose=purpose, expires_at=isoformat(expires_at))
        )
        logger.info("Issued %s OTP for account %s", purpose.value, account_id)
        return code

    def consume(self, account_id: int, code: str, purpose: OtpPurpose) -> Account:
        """Redeem a code. Returns the owning account; raises InvalidOrExpiredOtp on any miss.

        The message never says whether the account, the code, the purpose, or
        the expiry was the problem. The delete is checked so that two requests
        racing on the same code cannot both succeed.
        """
        record = self.store.find_otp(account_id, code, OtpPurpose(purpose), utcnow())
        if record is None or not self.store.delete_otp(record.id):
            raise InvalidOrExpiredOtp()
        account = self.store.get_by_id(account_id)
        if account is None:
            raise InvalidOrExpiredOtp()
        return account

    def purge_expired(self) -> int:
        """Delete expired, never-consumed codes. Returns the number removed."""
        return self.store.purge_expired_otps(utcnow())
