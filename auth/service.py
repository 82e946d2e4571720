"""
auth/service.py -- Session orchestrator: the only auth component callers invoke.

AuthService composes the password hasher, OTP service, token issuer/verifier
and revocation ledger into the account flows:

  signup -> PendingVerification
  verify_otp -> Active (token pair issued)
  login / federated_login -> Active
  refresh -> Active (new pair; old refresh token kept unless rotation is on)
  logout / logout_all -> LoggedOut for one / every refresh token
  request_password_reset / reset_password -> password replaced, no tokens
  admin_* -> administrator-gated account management

Error policy:
  Every public method runs inside _boundary(). AuthError subclasses pass
  through unchanged. Any other SQLAlchemyError is logged with its traceback
  and replaced by InternalFailure, whose message is generic.

Notification policy:
  OTP delivery goes through the injected sink. A delivery failure is logged
  and never rolls back the persisted account or code.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import functools
import logging
import secrets
from datetime import timedelta
from typing import Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import (
    AuthError,
    Conflict,
    Forbidden,
    InternalFailure,
    InvalidCredentials,
    InvalidOrExpiredOtp,
    InvalidToken,
    NotFound,
    Revoked,
    Unauthorized,
    ValidationFailure,
)
from auth.models import Account, IdentityAssertion, OtpPurpose, Role, TokenPair, TokenPayload
from auth.otp import OtpService
from auth.passwords import DUMMY_HASH, MAX_PASSWORD_BYTES, hash_password, verify_password
from auth.revocation import RevocationLedger
from auth.store import AccountStore, utcnow
from auth.tokens import TokenIssuer, TokenVerifier
from core.config import Settings

logger = logging.getLogger("sessiongate.auth.service")

MIN_PASSWORD_LENGTH = 8

_OTP_SUBJECTS = {
    OtpPurpose.SIGNUP: "Verify your email address",
    OtpPurpose.PASSWORD_RESET: "Reset your password",
}


class NotificationSink(Protocol):
    def send(self, to_address: str, subject: str, body: str) -> None: ...


def render_otp_email(code: str, purpose: OtpPurpose, expires_minutes: int) -> tuple[str, str]:
    """Return (subject, html_body) for an OTP delivery."""
    body = (
        '<div style="font-family: Arial, sans-serif; font-size: 16px;">'
        "<p>Hello,</p>"
        "<p>Your one-time passcode is:</p>"
        f"<h2>{code}</h2>"
        f"<p>This code will expire in {expires_minutes} minutes.</p>"
        "<p>If you did not request it, you can ignore this email.</p>"
        "</div>"
    )
    return _OTP_SUBJECTS[OtpPurpose(purpose)], body


def _boundary(method):
    """Map store faults to InternalFailure at the orchestrator edge."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except AuthError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Store failure in AuthService.%s", method.__name__)
            raise InternalFailure() from exc

    return wrapper


def _require_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailure(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationFailure(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.")


class AuthService:
    """Credential and session flows over one AccountStore.

    Build it with AuthService.from_settings() in application code; the plain
    constructor exists so tests can wire components individually.
    """

    def __init__(
        self,
        store: AccountStore,
        otp: OtpService,
        issuer: TokenIssuer,
        verifier: TokenVerifier,
        ledger: RevocationLedger,
        sink: NotificationSink,
        rotate_refresh_tokens: bool = False,
    ) -> None:
        self.store = store
        self.otp = otp
        self.issuer = issuer
        self.verifier = verifier
        self.ledger = ledger
        self.sink = sink
        self.rotate_refresh_tokens = rotate_refresh_tokens

    @classmethod
    def from_settings(cls, settings: Settings, store: AccountStore, sink: NotificationSink) -> "AuthService":
        refresh_ttl = timedelta(seconds=settings.refresh_token_expire_seconds)
        ledger = RevocationLedger(store, default_ttl=refresh_ttl)
        otp = OtpService(
            store,
            ttls={
                OtpPurpose.SIGNUP: timedelta(minutes=settings.signup_otp_expire_minutes),
                OtpPurpose.PASSWORD_RESET: timedelta(minutes=settings.reset_otp_expire_minutes),
            },
        )
        issuer = TokenIssuer(
            settings.access_token_secret,
            settings.refresh_token_secret,
            access_ttl=timedelta(seconds=settings.access_token_expire_seconds),
            refresh_ttl=refresh_ttl,
        )
        verifier = TokenVerifier(settings.access_token_secret, settings.refresh_token_secret, ledger)
        return cls(store, otp, issuer, verifier, ledger, sink, settings.rotate_refresh_tokens)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _deliver_otp(self, account: Account, purpose: OtpPurpose) -> None:
        code = self.otp.issue(account.id, purpose)
        minutes = int(self.otp.ttl_for(purpose).total_seconds() // 60)
        subject, body = render_otp_email(code, purpose, minutes)
        try:
            self.sink.send(account.email, subject, body)
        except Exception:
            # Best-effort sink; the persisted code stays valid.
            logger.exception("OTP delivery failed for account %s (%s)", account.id, purpose.value)

    def _issue_for(self, account: Account) -> TokenPair:
        return self.issuer.issue_pair(account.id, account.email, account.role)

    def _require_admin(self, access_token: str) -> TokenPayload:
        actor = self.verifier.verify_access(access_token)
        try:
            return self.verifier.check_role(actor, Role.ADMIN)
        except Forbidden:
            logger.warning("Account %s denied admin operation", actor.account_id)
            raise

    def _get_target(self, account_id: int) -> Account:
        account = self.store.get_by_id(account_id)
        if account is None:
            raise NotFound("User not found.")
        return account

    def _available_username(self, base: str) -> str:
        base = base.strip() or "user"
        if self.store.get_by_username(base) is None:
            return base
        return f"{base}-{secrets.token_hex(3)}"

    # ------------------------------------------------------------------
    # Signup and verification
    # ------------------------------------------------------------------

    @_boundary
    def signup(self, username: str, email: str, password: str) -> Account:
        """Create an unverified account and send its signup OTP. No tokens are issued."""
        _require_password(password)
        if self.store.email_or_username_taken(email, username):
            raise Conflict()
        try:
            account_id = self.store.create_account(
                Account(username=username, email=email, password_hash=hash_password(password))
            )
        except IntegrityError as exc:
            # A concurrent signup passed the pre-check first.
            raise Conflict() from exc
        account = self._get_target(account_id)
        logger.info("Account %s created (pending verification)", account.id)
        self._deliver_otp(account, OtpPurpose.SIGNUP)
        return account

    @_boundary
    def verify_otp(self, email: str, code: str) -> tuple[TokenPair, Account]:
        """Consume a signup OTP, mark the account verified, and open a session."""
        account = self.store.get_by_email(email)
        if account is None:
            raise InvalidOrExpiredOtp()
        account = self.otp.consume(account.id, code, OtpPurpose.SIGNUP)
        if not account.is_verified:
            self.store.update_account(account.id, is_verified=True)
            account.is_verified = True
        logger.info("Account %s verified", account.id)
        return self._issue_for(account), account

    @_boundary
    def resend_verification(self, email: str) -> None:
        """Send a fresh signup OTP to an unverified account. Silent otherwise."""
        account = self.store.get_by_email(email)
        if account is not None and not account.is_verified:
            self._deliver_otp(account, OtpPurpose.SIGNUP)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @_boundary
    def login(self, email: str, password: str) -> tuple[TokenPair, Account]:
        """Password login with timing equalization [C1].

        Unknown email, password-less account, and wrong password all raise the
        same InvalidCredentials. Only a caller who knows the password learns
        that the account still awaits verification.
        """
        account = self.store.get_by_email(email)
        if account is None or account.password_hash is None:
            verify_password(password, DUMMY_HASH)
            raise InvalidCredentials()
        if not verify_password(password, account.password_hash):
            raise InvalidCredentials()
        if not account.is_verified:
            raise Forbidden("Email address has not been verified.", code="email_not_verified")
        logger.info("Account %s logged in", account.id)
        return self._issue_for(account), account

    @_boundary
    def federated_login(self, assertion: IdentityAssertion) -> tuple[TokenPair, Account]:
        """Open a session for an identity-provider assertion, provisioning on first sight.

        Provisioned accounts have role user, no password hash, and count as
        verified (the provider vouched for the email).
        """
        account = self.store.get_by_email(assertion.email)
        if account is None:
            username = self._available_username(assertion.display_name or assertion.email.split("@", 1)[0])
            try:
                account_id = self.store.create_account(
                    Account(
                        username=username,
                        email=assertion.email,
                        is_verified=True,
                        display_name=assertion.display_name,
                        picture_url=assertion.picture_url,
                    )
                )
            except IntegrityError as exc:
                account = self.store.get_by_email(assertion.email)
                if account is None:
                    raise Conflict() from exc
            else:
                account = self._get_target(account_id)
                logger.info("Account %s provisioned from identity provider", account.id)
        return self._issue_for(account), account

    @_boundary
    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a valid, unrevoked refresh token for a new pair.

        Identity is re-read from the store so a deleted account cannot refresh
        and a changed role takes effect. With rotate_refresh_tokens the
        presented token is claimed in the ledger before the new pair is
        issued; a second presentation, even a concurrent one, gets Revoked.
        """
        payload = self.verifier.verify_refresh(refresh_token)
        account = self.store.get_by_id(payload.account_id)
        if account is None:
            raise Unauthorized()
        if self.rotate_refresh_tokens and not self.ledger.claim(account.id, refresh_token):
            raise Revoked()
        return self._issue_for(account)

    @_boundary
    def logout(self, access_token: str, refresh_token: str) -> None:
        """Revoke one refresh token belonging to the caller."""
        actor = self.verifier.verify_access(access_token)
        try:
            target = self.verifier.verify_refresh(refresh_token, check_revocation=False)
        except InvalidToken as exc:
            raise ValidationFailure("Invalid refresh token.", code="invalid_refresh_token") from exc
        if target.account_id != actor.account_id:
            raise Forbidden("Refresh token belongs to another account.")
        self.ledger.revoke(actor.account_id, refresh_token)

    @_boundary
    def logout_all(self, access_token: str) -> None:
        """Revoke every refresh token of the caller via the ALL_SESSIONS sentinel."""
        actor = self.verifier.verify_access(access_token)
        self.ledger.revoke_all(actor.account_id)

    @_boundary
    def me(self, access_token: str) -> Account:
        actor = self.verifier.verify_access(access_token)
        account = self.store.get_by_id(actor.account_id)
        if account is None:
            raise NotFound("User not found.")
        return account

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    @_boundary
    def request_password_reset(self, email: str) -> None:
        """Send a password_reset OTP if the account exists. The outcome never says which."""
        account = self.store.get_by_email(email)
        if account is not None:
            self._deliver_otp(account, OtpPurpose.PASSWORD_RESET)

    @_boundary
    def reset_password(self, email: str, code: str, new_password: str) -> None:
        """Consume a password_reset OTP and replace the password hash. Issues no tokens.

        The code proves control of the mailbox, so the account is marked
        verified as well.
        """
        _require_password(new_password)
        account = self.store.get_by_email(email)
        if account is None:
            raise InvalidOrExpiredOtp()
        self.otp.consume(account.id, code, OtpPurpose.PASSWORD_RESET)
        self.store.update_account(account.id, password_hash=hash_password(new_password), is_verified=True)
        logger.info("Password reset for account %s", account.id)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @_boundary
    def admin_list_users(self, access_token: str) -> list[Account]:
        self._require_admin(access_token)
        return self.store.list_accounts()

    @_boundary
    def admin_get_user(self, access_token: str, target_id: int) -> Account:
        self._require_admin(access_token)
        return self._get_target(target_id)

    @_boundary
    def admin_set_role(self, access_token: str, target_id: int, role: Role) -> Account:
        actor = self._require_admin(access_token)
        account = self.assign_role(target_id, role)
        logger.info("Account %s set role of %s to %s", actor.account_id, target_id, account.role.value)
        return account

    @_boundary
    def admin_delete_user(self, access_token: str, target_id: int) -> None:
        """Hard-delete an account. Admins cannot delete themselves."""
        actor = self._require_admin(access_token)
        if actor.account_id == target_id:
            raise ValidationFailure("You cannot delete your own account.", code="self_delete")
        self._get_target(target_id)
        self.store.delete_account(target_id)
        logger.info("Account %s deleted account %s", actor.account_id, target_id)

    @_boundary
    def admin_stats(self, access_token: str) -> dict:
        self._require_admin(access_token)
        return {
            "total_users": self.store.count_accounts(),
            "users_by_role": self.store.count_by_role(),
            "recent_registrations": self.store.count_created_since(utcnow() - timedelta(days=7)),
        }

    @_boundary
    def admin_list_otps(self, access_token: str, limit: int = 100) -> list[dict]:
        """Return recent OTP metadata. Codes themselves are never exposed."""
        self._require_admin(access_token)
        return self.store.list_recent_otps(limit)

    # ------------------------------------------------------------------
    # Operator entry points (CLI, lifespan)
    # ------------------------------------------------------------------

    @_boundary
    def assign_role(self, target_id: int, role: Role) -> Account:
        """Change an account's role. The last admin cannot be demoted."""
        role = Role(role)
        target = self._get_target(target_id)
        if target.role is Role.ADMIN and role is not Role.ADMIN:
            if self.store.count_by_role().get(Role.ADMIN.value, 0) <= 1:
                raise ValidationFailure("Cannot demote the last admin account.", code="last_admin")
        self.store.update_account(target_id, role=role)
        target.role = role
        return target

    @_boundary
    def bootstrap_admin(self, username: str, email: str, password: str) -> Account:
        """Create a verified admin account without an acting admin (first-run setup)."""
        _require_password(password)
        try:
            account_id = self.store.create_account(
                Account(
                    username=username,
                    email=email,
                    password_hash=hash_password(password),
                    role=Role.ADMIN,
                    is_verified=True,
                )
            )
        except IntegrityError as exc:
            raise Conflict() from exc
        return self._get_target(account_id)

    @_boundary
    def purge_expired(self) -> dict[str, int]:
        """Reap expired OTP and revocation rows. Returns counts per table."""
        return {"otps": self.otp.purge_expired(), "revocations": self.ledger.purge_expired()}
