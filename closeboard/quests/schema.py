"""Pydantic payloads for creating and executing requests."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from closeboard.models.entities import QuestMode, SendTiming

StopCondition = Literal["reply", "deadline", "reply_or_deadline"]


class QuestCreate(BaseModel):
    """A request to send for a job. Which recipient fields apply depends on mode."""

    job_id: int
    mode: QuestMode = QuestMode.standard
    subject: str
    body: str
    # standard / form_request: defaults to the job's stakeholders when omitted
    contact_ids: list[int] | None = None
    # data_personalization
    database_id: int | None = None
    email_column_key: str | None = None

    send_timing: SendTiming = SendTiming.immediate
    send_at: datetime | None = None
    schedule_config: dict[str, Any] | None = None

    reminders_enabled: bool = False
    reminder_frequency_days: int = Field(default=3, ge=1, le=30)
    reminder_stop_condition: StopCondition = "reply_or_deadline"
    deadline: datetime | None = None


class QuestExecute(BaseModel):
    subject: str | None = None
    body: str | None = None
    allow_missing: bool = False
