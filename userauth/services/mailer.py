"""Outgoing email: template rendering and SMTP/console delivery."""

import logging
import smtplib
import ssl
import threading
from email.message import EmailMessage
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from userauth.config import Settings, get_settings
from userauth.errors import MailDeliveryError

logger = logging.getLogger("userauth")

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

_templates = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html"]),
)


class Mailer:
    """Renders and delivers account emails.

    One instance lives for the whole process. The SMTP backend keeps a
    single connection open and reuses it across requests; ``close`` is
    called from the application shutdown hook.
    """

    def __init__(
        self,
        backend: str = "console",
        sender: str = "no-reply@localhost",
        host: str = "localhost",
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: int = 10,
    ) -> None:
        self.backend = backend if backend in ("console", "smtp") else "console"
        self.sender = sender
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self._smtp: smtplib.SMTP | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Mailer":
        settings = settings or get_settings()
        return cls(
            backend=settings.MAIL_BACKEND,
            sender=settings.MAIL_FROM,
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
            timeout=settings.SMTP_TIMEOUT_SECONDS,
        )

    def render(self, to_email: str, subject: str, template: str, **context) -> EmailMessage:
        """Build a multipart message from ``<template>.txt`` and ``<template>.html``."""
        context.setdefault("subject", subject)
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.set_content(_templates.get_template(f"{template}.txt").render(**context))
        msg.add_alternative(_templates.get_template(f"{template}.html").render(**context), subtype="html")
        return msg

    def send(self, to_email: str, subject: str, template: str, **context) -> None:
        """Render and deliver a message. Raises MailDeliveryError on transport failure."""
        msg = self.render(to_email, subject, template, **context)
        try:
            self._deliver(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email delivery to %s failed (%s): %s", to_email, subject, e)
            raise MailDeliveryError() from e
        logger.info("Email sent to %s: %s", to_email, subject)

    def _deliver(self, msg: EmailMessage) -> None:
        if self.backend == "console":
            logger.info("MAIL to=%s subject=%s\n%s", msg["To"], msg["Subject"], msg.get_body(("plain",)).get_content())
            return

        with self._lock:
            try:
                self._connection().send_message(msg)
            except smtplib.SMTPServerDisconnected:
                # Idle connections get dropped by the server; retry once on a fresh one.
                self._smtp = None
                self._connection().send_message(msg)

    def _connection(self) -> smtplib.SMTP:
        if self._smtp is None:
            smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            try:
                if self.use_tls:
                    smtp.starttls(context=ssl.create_default_context())
                if self.username and self.password:
                    smtp.login(self.username, self.password)
            except (smtplib.SMTPException, OSError):
                smtp.close()
                raise
            self._smtp = smtp
        return self._smtp

    def close(self) -> None:
        """Close the SMTP connection if one is open."""
        with self._lock:
            if self._smtp is None:
                return
            try:
                self._smtp.quit()
            except (smtplib.SMTPException, OSError) as e:
                logger.warning("Closing SMTP connection failed: %s", e)
            finally:
                self._smtp = None

    # --- account emails ---

    def send_verification_email(self, to_email: str, username: str, token: str) -> None:
        link = f"{get_settings().API_BASE_URL}/api/auth/verify-email?token={token}"
        self.send(to_email, "Verify Your Email", "verify_email", username=username, link=link)

    def send_password_reset_email(self, to_email: str, token: str, expires_minutes: int) -> None:
        link = f"{get_settings().FRONTEND_URL}/reset-password?token={token}"
        self.send(to_email, "Password Reset", "password_reset", link=link, expires_minutes=expires_minutes)

    def send_password_changed_email(self, to_email: str) -> None:
        self.send(to_email, "Password changed", "password_changed", email=to_email)
