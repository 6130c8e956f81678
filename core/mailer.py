"""
core/mailer.py -- Outbound transactional email over SMTP.

Bodies are rendered from Jinja2 templates under core/templates/email/. Every
message goes out as multipart/alternative with a plain-text part (<name>.txt)
and an HTML part (<name>.html).

Failure contract: any SMTP or socket error is re-raised as MailDeliveryError.
Callers decide whether that becomes a 503 or is reported some other way; the
mailer never retries and never swallows.

Tests subclass Mailer and override _deliver() to capture messages instead of
opening a socket, so template rendering stays covered.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import Settings
from core.errors import MailDeliveryError

logger = logging.getLogger("myassets.mailer")

_TEMPLATE_DIR = Path(__file__).parent / "templates"

_SUBJECTS = {
    "verify_email": "Verify your email - {app}",
    "otp": "Your access code - {app}",
    "password_reset": "Reset your password - {app}",
    "test": "Test email - {app}",
}


class Mailer:
    """SMTP mailer configured from Settings.

    Usage:
        mailer = Mailer(get_settings())
        mailer.send_otp("ana@example.cl", "Ana", "123456", "LOGIN")
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.env = Environment(
            loader=FileSystemLoader(str(_TEMPLATE_DIR)),
            autoescape=select_autoescape(["html"]),
        )
        if not (settings.smtp_user and settings.smtp_password):
            logger.warning("SMTP_USER or SMTP_PASSWORD not set; outbound mail will likely be rejected.")

    # ------------------------------------------------------------------
    # Message types
    # ------------------------------------------------------------------

    def send_verification(self, to: str, name: str, url: str) -> None:
        self.send(to, "verify_email", name=name, url=url, hours=24)

    def send_otp(self, to: str, name: str, code: str, purpose: str) -> None:
        self.send(to, "otp", name=name, code=code, purpose=purpose, minutes=10)

    def send_password_reset(self, to: str, name: str, url: str) -> None:
        self.send(to, "password_reset", name=name, url=url, hours=1)

    def send_test(self, to: str) -> None:
        self.send(to, "test")

    # ------------------------------------------------------------------
    # Rendering and transport
    # ------------------------------------------------------------------

    def render(self, template: str, **context) -> tuple[str, str]:
        """Return (text, html) bodies for the named template."""
        context.setdefault("app_name", self.settings.app_name)
        text = self.env.get_template(f"email/{template}.txt").render(**context)
        html = self.env.get_template(f"email/{template}.html").render(**context)
        return text, html

    def send(self, to: str, template: str, **context) -> None:
        text, html = self.render(template, **context)
        msg = EmailMessage()
        msg["From"] = self.settings.mail_from
        msg["To"] = to
        msg["Subject"] = _SUBJECTS[template].format(app=self.settings.app_name)
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        self._deliver(msg)
        logger.info("Sent %s email to %s", template, to)

    def _deliver(self, msg: EmailMessage) -> None:
        s = self.settings
        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout_seconds) as server:
                if s.smtp_use_tls:
                    server.starttls()
                if s.smtp_user and s.smtp_password:
                    server.login(s.smtp_user, s.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP delivery to %s failed: %s", msg["To"], exc)
            raise MailDeliveryError(str(exc)) from exc
