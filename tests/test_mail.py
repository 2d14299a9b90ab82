"""Mailer selection and SMTP delivery (smtplib mocked)."""

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from closeboard.core.config import Settings
from closeboard.mail.base import LogMailer, MailDeliveryError, MailMessage
from closeboard.mail.factory import SenderNotConnectedError, get_mailer
from closeboard.mail.smtp import SmtpMailer

pytestmark = [pytest.mark.fast]


def _message() -> MailMessage:
    return MailMessage(
        to="ana@example.com",
        to_name="Ana Ruiz",
        subject="Bank statements",
        body="Hi Ana",
        sender="close@example.com",
        headers={"X-Closeboard-Request": "abc"},
    )


def test_log_mailer_is_default():
    assert isinstance(get_mailer(Settings()), LogMailer)


def test_smtp_without_host_is_not_connected():
    with pytest.raises(SenderNotConnectedError) as exc:
        get_mailer(Settings(mailer="smtp"))
    assert exc.value.code == "SENDER_NOT_CONNECTED"


def test_smtp_mailer_selected_with_host():
    assert isinstance(get_mailer(Settings(mailer="smtp", smtp_host="mail.example.com")), SmtpMailer)


def test_smtp_send_uses_tls_and_login():
    server = MagicMock()
    with patch("closeboard.mail.smtp.smtplib.SMTP") as smtp_cls:
        smtp_cls.return_value.__enter__.return_value = server
        message_id = SmtpMailer("mail.example.com", username="u", password="p").send(_message())

    smtp_cls.assert_called_once_with("mail.example.com", 587, timeout=30.0)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("u", "p")
    sent = server.send_message.call_args.args[0]
    assert sent["To"] == "Ana Ruiz <ana@example.com>"
    assert sent["X-Closeboard-Request"] == "abc"
    assert sent["Message-ID"] == message_id


def test_smtp_failure_raises_delivery_error():
    with patch("closeboard.mail.smtp.smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, "busy")):
        with pytest.raises(MailDeliveryError):
            SmtpMailer("mail.example.com", use_tls=False).send(_message())
