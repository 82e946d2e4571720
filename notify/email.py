"""
notify/email.py -- Transactional email via the Brevo HTTP API.

Delivery is best effort. send() never raises: a failed delivery is logged and
the caller's business outcome (an account or OTP already persisted) stands.
Nothing here retries; a request that needs a new code asks for one.

When EMAIL_API_KEY is empty (local development) the message is logged instead
of sent, with the recipient redacted and the body omitted.
"""

from __future__ import annotations

import logging

import requests

from core.config import Settings

logger = logging.getLogger("sessiongate.notify")

# Module-level session shared across sends for connection pooling.
# max_redirects=3 replaces the requests default of 30 -- the mail API is a
# known endpoint and never needs a long redirect chain.
_session = requests.Session()
_session.max_redirects = 3


def redact_email(address: str) -> str:
    """Return a log-safe form of an email address (first two chars of the local part)."""
    if "@" not in address:
        return "redacted"
    local, domain = address.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailSender:
    """Notification sink backed by Brevo's /v3/smtp/email endpoint.

    Usage:
        sender = EmailSender.from_settings(get_settings())
        sender.send("alice@x.com", "Subject", "<p>Body</p>")
    """

    def __init__(
        self,
        api_key: str,
        sender_address: str,
        sender_name: str,
        api_url: str = "https://api.brevo.com/v3/smtp/email",
        timeout: float = 10.0,
    ) -> None:
        self.api_key = api_key
        self.sender_address = sender_address
        self.sender_name = sender_name
        self.api_url = api_url
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailSender":
        return cls(
            api_key=settings.email_api_key,
            sender_address=settings.email_sender_address,
            sender_name=settings.email_sender_name,
            api_url=settings.email_api_url,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def send(self, to_address: str, subject: str, body: str) -> None:
        if not self.is_configured:
            logger.info("Email delivery disabled; dropped %r to %s", subject, redact_email(to_address))
            return

        message = {
            "sender": {"name": self.sender_name, "email": self.sender_address},
            "to": [{"email": to_address}],
            "subject": subject,
            "htmlContent": body,
        }
        try:
            resp = _session.post(
                self.api_url,
                json=message,
                headers={"api-key": self.api_key, "accept": "application/json"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Email delivery to %s failed: %s", redact_email(to_address), e)
            return
        logger.info("Email %r sent to %s", subject, redact_email(to_address))
