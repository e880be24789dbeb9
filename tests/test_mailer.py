"""Tests for email rendering and delivery."""

import logging
import smtplib
from unittest.mock import MagicMock, patch

import pytest

from userauth.errors import MailDeliveryError
from userauth.services.mailer import Mailer


def _plain(msg) -> str:
    return msg.get_body(("plain",)).get_content()


def _html(msg) -> str:
    return msg.get_body(("html",)).get_content()


class TestRendering:
    def test_verification_email(self):
        msg = Mailer(sender="accounts@example.com").render(
            "alice@example.com",
            "Verify Your Email",
            "verify_email",
            username="alice",
            link="http://api.test/api/auth/verify-email?token=abc",
        )
        assert msg["From"] == "accounts@example.com"
        assert msg["To"] == "alice@example.com"
        assert "alice" in _plain(msg)
        assert "http://api.test/api/auth/verify-email?token=abc" in _plain(msg)
        assert 'href="http://api.test/api/auth/verify-email?token=abc"' in _html(msg)

    def test_html_is_escaped(self):
        msg = Mailer().render(
            "x@example.com",
            "Verify Your Email",
            "verify_email",
            username="<script>",
            link="http://api.test/verify",
        )
        assert "<script>" not in _html(msg)
        assert "&lt;script&gt;" in _html(msg)

    def test_password_reset_email_mentions_expiry(self):
        msg = Mailer().render(
            "alice@example.com",
            "Password Reset",
            "password_reset",
            link="http://app.test/reset-password?token=xyz",
            expires_minutes=60,
        )
        assert "http://app.test/reset-password?token=xyz" in _plain(msg)
        assert "60" in _plain(msg)


class TestConsoleBackend:
    def test_logs_instead_of_sending(self, caplog):
        mailer = Mailer(backend="console")
        with caplog.at_level(logging.INFO, logger="userauth"):
            mailer.send_password_changed_email("alice@example.com")
        assert "MAIL to=alice@example.com" in caplog.text

    def test_unknown_backend_falls_back_to_console(self):
        assert Mailer(backend="carrier-pigeon").backend == "console"


class TestSmtpBackend:
    def _mailer(self) -> Mailer:
        return Mailer(backend="smtp", host="smtp.test", port=2525, username="u", password="p", use_tls=False)

    def test_sends_and_reuses_connection(self):
        with patch("userauth.services.mailer.smtplib.SMTP") as smtp_cls:
            mailer = self._mailer()
            mailer.send_password_changed_email("a@example.com")
            mailer.send_password_changed_email("b@example.com")

        smtp_cls.assert_called_once_with("smtp.test", 2525, timeout=10)
        conn = smtp_cls.return_value
        conn.login.assert_called_once_with("u", "p")
        assert conn.send_message.call_count == 2

    def test_connection_failure_raises_delivery_error(self):
        with patch("userauth.services.mailer.smtplib.SMTP", side_effect=OSError("connection refused")):
            with pytest.raises(MailDeliveryError):
                self._mailer().send_password_changed_email("a@example.com")

    def test_smtp_error_raises_delivery_error(self):
        conn = MagicMock()
        conn.send_message.side_effect = smtplib.SMTPRecipientsRefused({"a@example.com": (550, b"no such user")})
        with patch("userauth.services.mailer.smtplib.SMTP", return_value=conn):
            with pytest.raises(MailDeliveryError):
                self._mailer().send_password_changed_email("a@example.com")

    def test_failed_login_closes_socket(self):
        conn = MagicMock()
        conn.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
        with patch("userauth.services.mailer.smtplib.SMTP", return_value=conn):
            mailer = self._mailer()
            with pytest.raises(MailDeliveryError):
                mailer.send_password_changed_email("a@example.com")
        conn.close.assert_called_once()
        assert mailer._smtp is None

    def test_failed_starttls_closes_socket(self):
        conn = MagicMock()
        conn.starttls.side_effect = smtplib.SMTPNotSupportedError("STARTTLS extension not supported by server.")
        mailer = Mailer(backend="smtp", host="smtp.test", port=2525, use_tls=True)
        with patch("userauth.services.mailer.smtplib.SMTP", return_value=conn):
            with pytest.raises(MailDeliveryError):
                mailer.send_password_changed_email("a@example.com")
        conn.close.assert_called_once()
        conn.send_message.assert_not_called()

    def test_reconnects_once_after_disconnect(self):
        stale, fresh = MagicMock(), MagicMock()
        stale.send_message.side_effect = smtplib.SMTPServerDisconnected()
        with patch("userauth.services.mailer.smtplib.SMTP", side_effect=[stale, fresh]):
            self._mailer().send_password_changed_email("a@example.com")
        fresh.send_message.assert_called_once()

    def test_close_quits_connection(self):
        with patch("userauth.services.mailer.smtplib.SMTP") as smtp_cls:
            mailer = self._mailer()
            mailer.send_password_changed_email("a@example.com")
            mailer.close()
        smtp_cls.return_value.quit.assert_called_once()
        assert mailer._smtp is None

    def test_close_without_connection_is_noop(self):
        self._mailer().close()
