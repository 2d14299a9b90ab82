"""Outbound mail providers."""

from closeboard.mail.base import BaseMailer, LogMailer, MailDeliveryError, MailMessage
from closeboard.mail.factory import get_mailer

__all__ = ["BaseMailer", "LogMailer", "MailDeliveryError", "MailMessage", "get_mailer"]
