"""Abstract base and in-memory implementation for outbound mail."""

import logging
import uuid
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

_log = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    """The provider refused or could not take a message."""


class MailMessage(BaseModel):
    to: str
    subject: str
    body: str
    sender: str
    to_name: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)


class BaseMailer(ABC):
    """Abstract base for sending one message; returns the provider message id."""

    @abstractmethod
    def send(self, message: MailMessage) -> str:
        ...


class LogMailer(BaseMailer):
    """Records messages in memory and logs them instead of delivering (development and tests)."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, MailMessage]] = []

    def send(self, message: MailMessage) -> str:
        message_id = f"<{uuid.uuid4().hex}@closeboard.local>"
        self.sent.append((message_id, message))
        _log.info("mail_logged to=%s subject=%s message_id=%s", message.to, message.subject, message_id)
        return message_id
