"""Pydantic data contracts for request drafting."""

from datetime import date

from pydantic import BaseModel, Field


class Draft(BaseModel):
    """Subject and body of an outbound request; may contain {{Tag}} placeholders."""

    subject: str
    body: str


class DraftRecipient(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str


class DraftContext(BaseModel):
    """What a drafter knows about the job a request is being written for."""

    job_name: str
    description: str | None = None
    due_date: date | None = None
    labels: list[str] = Field(default_factory=list)
    recipients: list[DraftRecipient] = Field(default_factory=list)
    available_tags: list[str] = Field(default_factory=lambda: ["First Name", "Email"])
    sender_name: str | None = None
    form_link: bool = False


class DraftResult(BaseModel):
    draft: Draft
    used_fallback: bool = False
    fallback_reason: str | None = None
    refinement_failed: bool = False


class CloseInsights(BaseModel):
    """Observations and follow-ups for a close retrospective."""

    insights: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
