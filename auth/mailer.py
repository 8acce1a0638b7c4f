"""
auth/mailer.py -- Magic-link email construction and the delivery collaborator.

The core builds the realm-specific link and the message; a Mailer only
transports it. Two transports:

  ResendMailer  POST https://api.resend.com/emails via requests, with a timeout.
  LogMailer     dev mode (no RESEND_API_KEY): logs a redacted line instead of
                sending. The link itself is logged only when DEBUG=true.

Any transport failure becomes DeliveryFailure. It is not retried here; the
requester is told to try again.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import html
import logging
from urllib.parse import urlencode

import requests

from auth.errors import DeliveryFailure
from auth.realms import Realm
from core.config import get_settings

logger = logging.getLogger("dealroom.auth.mailer")

_RESEND_URL = "https://api.resend.com/emails"


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Mailer:
    """Delivery interface: send(to, subject, html_body). Raises DeliveryFailure."""

    def send(self, to: str, subject: str, html_body: str) -> None:
        raise NotImplementedError


class ResendMailer(Mailer):
    def __init__(self, api_key: str, sender: str, timeout: float = 10.0) -> None:
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def send(self, to: str, subject: str, html_body: str) -> None:
        try:
            resp = requests.post(
                _RESEND_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.sender, "to": [to], "subject": subject, "html": html_body},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Failed to send email to %s: %s", redact_email(to), exc.__class__.__name__)
            raise DeliveryFailure() from exc
        logger.info("Sent email to %s", redact_email(to))


class LogMailer(Mailer):
    def __init__(self, debug: bool = False) -> None:
        self.debug = debug

    def send(self, to: str, subject: str, html_body: str) -> None:
        logger.info("Email (dev mode, not sent) to=%s subject=%r", redact_email(to), subject)
        if self.debug:
            logger.debug("Email body: %s", html_body)


def build_mailer() -> Mailer:
    """Pick the transport from settings."""
    settings = get_settings()
    if settings.resend_api_key:
        return ResendMailer(settings.resend_api_key, settings.email_from, settings.email_timeout_seconds)
    logger.warning("RESEND_API_KEY not set -- verification emails will be logged, not sent")
    return LogMailer(debug=settings.debug)


# ---------------------------------------------------------------------------
# Magic-link content
# ---------------------------------------------------------------------------


def magic_link_url(base_url: str, realm: Realm, raw_token: str, email: str) -> str:
    """The emailed link: the realm's own callback path, never a shared one."""
    query = urlencode({"token": raw_token, "email": email})
    return f"{base_url}{realm.email_callback_path}?{query}"


def magic_link_email(realm: Realm, url: str, app_name: str) -> tuple[str, str]:
    """Return (subject, html body) for a sign-in link."""
    title = html.escape(realm.issuer_label(app_name))
    href = html.escape(url, quote=True)
    subject = f"Sign in to {realm.issuer_label(app_name)}"
    body = f"""
      <div style="font-family: sans-serif; max-width: 500px; margin: 0 auto;">
        <h1 style="color: #ffffff; background: #1c1f37; padding: 20px; margin: 0;">{title}</h1>
        <div style="padding: 20px; background: #f5f5f5;">
          <p>Click the button below to sign in:</p>
          <a href="{href}" style="display: inline-block; background: #1c1f37; color: white; padding: 12px 24px;
             text-decoration: none; font-weight: bold; margin: 20px 0;">Sign In</a>
          <p style="color: #666; font-size: 14px;">If you didn't request this email, you can safely ignore it.</p>
          <p style="color: #666; font-size: 12px;">Or copy this link: {href}</p>
        </div>
      </div>
    """
    return subject, body
