"""Factory for mailers."""

from closeboard.core.config import Settings
from closeboard.core.errors import ServiceError
from closeboard.mail.base import BaseMailer, LogMailer


class SenderNotConnectedError(ServiceError):
    status_code = 400
    code = "SENDER_NOT_CONNECTED"


def get_mailer(settings: Settings) -> BaseMailer:
    """Return the mailer selected by settings.mailer. SMTP needs smtp_host."""
    if settings.mailer == "log":
        return LogMailer()
    if settings.mailer == "smtp":
        if not settings.smtp_host:
            raise SenderNotConnectedError("No email account is connected: set smtp_host to send requests")
        from closeboard.mail.smtp import SmtpMailer

        return SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
    raise ValueError(f"Unknown mailer: {settings.mailer}")
