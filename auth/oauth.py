"""
auth/oauth.py -- Authlib registration for the external identity provider.

SessionGate brokers exactly one provider: Google, via the OIDC authorization
code flow. The provider is registered only when both client ID and secret are
configured; the API reports it through get_enabled_providers().

Security notes:
  [H1] Email verification is mandatory. identity_from_token() raises ValueError
       if the provider does not confirm the email is verified. An unverified
       address could belong to someone other than the mailbox owner, and the
       orchestrator links provider logins to existing accounts by email.

  OAuth state (CSRF protection) is handled by authlib automatically via
  Starlette SessionMiddleware.

Layer rule: no imports from api/ or notify/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import IdentityAssertion
from core.config import get_settings

logger = logging.getLogger("sessiongate.auth.oauth")

GOOGLE = "google"

oauth = OAuth()

_cfg = get_settings()

if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name=GOOGLE,
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google identity provider registered")


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every configured provider."""
    cfg = get_settings()
    if cfg.google_client_id and cfg.google_client_secret:
        return [{"name": GOOGLE, "label": "Google"}]
    return []


def identity_from_token(token: dict) -> IdentityAssertion:
    """Extract the identity assertion from an authlib token response [H1].

    Raises:
        ValueError: If userinfo is missing, the email is unverified, or the
            email claim is absent.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError("google OAuth: email is not verified")

    email = userinfo.get("email")
    if not email:
        raise ValueError("google OAuth: missing email claim in userinfo")

    return IdentityAssertion(
        email=email,
        display_name=userinfo.get("name") or email.split("@", 1)[0],
        picture_url=userinfo.get("picture"),
    )
