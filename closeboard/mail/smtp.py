"""SMTP delivery with the standard library smtplib."""

import logging
import smtplib
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid

from closeboard.mail.base import BaseMailer, MailDeliveryError, MailMessage

_log = logging.getLogger(__name__)


class SmtpMailer(BaseMailer):
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout

    def send(self, message: MailMessage) -> str:
        """Send one plain-text message. Connection and protocol failures raise MailDeliveryError."""
        msg = MIMEText(message.body, "plain", "utf-8")
        msg["Subject"] = message.subject
        msg["From"] = message.sender
        msg["To"] = formataddr((message.to_name, message.to)) if message.to_name else message.to
        message_id = make_msgid(domain=message.sender.split("@")[-1] or None)
        msg["Message-ID"] = message_id
        for name, value in message.headers.items():
            msg[name] = value

        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                if self._use_tls:
                    server.starttls()
                if self._username:
                    server.login(self._username, self._password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise MailDeliveryError(str(e)) from e
        _log.info("mail_sent to=%s message_id=%s", message.to, message_id)
        return message_id
