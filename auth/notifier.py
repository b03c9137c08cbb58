"""
auth/notifier.py -- One-time code delivery.

Delivery is best-effort: send() reports success as a bool and never raises.
The auth service logs a False result and carries on issuing the code, so an
SMTP outage degrades to "user did not receive the email" rather than failing
the signup or login request.

Two implementations:
  SmtpNotifier    -- sends a branded HTML email over SMTP + STARTTLS
                     (Gmail app passwords by default).
  ConsoleNotifier -- logs the code. Used when EMAIL_USER / EMAIL_PASS are not
                     set, so local development works without mail credentials.

build_notifier(settings) picks one at startup.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from html import escape
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("finflex.notify")

SUBJECT = "FinFlex Verification Code"


class Notifier(Protocol):
    def send(self, email: str, code: str) -> bool: ...


def _render_html(code: str, ttl_minutes: int) -> str:
    safe_code = escape(code)
    return f"""
<div style="font-family: sans-serif; max-width: 400px; margin: auto; padding: 20px; border-radius: 20px; background: #0A0D14; border: 1px solid #1C222E; color: white;">
  <h2 style="color: #22D3EE; margin-bottom: 8px;">FinFlex</h2>
  <p style="color: #94A3B8; font-size: 14px; margin-bottom: 24px;">Level Up Your Money</p>
  <p style="color: #CBD5E1; margin-bottom: 8px;">Here is your login code:</p>
  <h1 style="font-size: 40px; font-weight: 900; letter-spacing: 4px; margin: 0; color: white; display: inline-block;">{safe_code}</h1>
  <div style="margin-top: 32px; border-top: 1px solid #1C222E; padding-top: 16px;">
    <p style="color: #64748B; font-size: 10px; text-transform: uppercase; letter-spacing: 1px;">This code will expire in {ttl_minutes} minutes.</p>
  </div>
</div>
"""


def build_message(sender: str, recipient: str, code: str, ttl_minutes: int) -> EmailMessage:
    """Build the verification email: plain-text part plus an HTML alternative."""
    msg = EmailMessage()
    msg["Subject"] = SUBJECT
    msg["From"] = sender
    msg["To"] = recipient
    msg.set_content(f"Your FinFlex verification code is {code}. It expires in {ttl_minutes} minutes.")
    msg.add_alternative(_render_html(code, ttl_minutes), subtype="html")
    return msg


class ConsoleNotifier:
    """Logs the code instead of sending it. Development only."""

    def send(self, email: str, code: str) -> bool:
        logger.warning("[AUTH-MOCK] OTP for %s: %s (set EMAIL_USER/EMAIL_PASS for real emails)", email, code)
        return True


class SmtpNotifier:
    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_name: str = "FinFlex",
        ttl_seconds: int = 300,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        # Gmail displays app passwords in groups of four; the spaces are not part of it.
        self._password = password.replace(" ", "")
        self.sender = f'"{from_name}" <{username}>'
        self.ttl_minutes = max(1, ttl_seconds // 60)
        self.timeout = timeout

    def send(self, email: str, code: str) -> bool:
        msg = build_message(self.sender, email, code, self.ttl_minutes)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(self.username, self._password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("SMTP delivery to %s failed", email)
            # Keeps internal testing possible while mail is broken.
            logger.warning("[AUTH-FALLBACK] OTP for %s: %s", email, code)
            return False
        logger.info("Verification email sent to %s via %s", email, self.host)
        return True


def build_notifier(settings: Settings) -> Notifier:
    """Return an SmtpNotifier when email credentials are configured, else a ConsoleNotifier."""
    if not settings.email_configured:
        logger.warning("EMAIL_USER/EMAIL_PASS not set -- OTP codes will be logged, not emailed")
        return ConsoleNotifier()
    return SmtpNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.email_user,
        password=settings.email_pass,
        from_name=settings.email_from_name,
        ttl_seconds=settings.otp_ttl_seconds,
        timeout=settings.smtp_timeout_seconds,
    )
