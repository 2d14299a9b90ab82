"""Abstract base and deterministic template implementation for request drafters."""

from abc import ABC, abstractmethod

from closeboard.boards.close_summary import CloseSummary, deterministic_insights
from closeboard.drafting.prompts import format_long_date
from closeboard.drafting.schema import CloseInsights, Draft, DraftContext


class BaseDrafter(ABC):
    """Abstract base for writing and revising request emails."""

    name: str = "base"

    @abstractmethod
    def draft(self, context: DraftContext) -> Draft:
        """Write a first draft for the job in context."""
        ...

    @abstractmethod
    def refine(self, context: DraftContext, current: Draft, instruction: str) -> Draft:
        """Revise current according to a free-text instruction."""
        ...

    @abstractmethod
    def close_insights(self, summary: CloseSummary) -> CloseInsights:
        """Explain what slowed a close and suggest how to speed up the next one."""
        ...


class TemplateDrafter(BaseDrafter):
    """Deterministic drafter; also the fallback when a remote drafter fails."""

    name = "template"

    def draft(self, context: DraftContext) -> Draft:
        body = f"Hi {{{{First Name}}}},\n\nI'm reaching out regarding {context.job_name}."
        if context.description:
            body += f"\n\n{context.description}"
        if context.due_date:
            body += f"\n\nThis is needed by {format_long_date(context.due_date)}."
        if context.form_link:
            body += "\n\nPlease submit your response here: {{Form Link}}"
        body += "\n\nPlease let me know if you have any questions.\n\nBest regards"
        if context.sender_name:
            body += f",\n{context.sender_name}"
        return Draft(subject=f"Request: {context.job_name}", body=body)

    def refine(self, context: DraftContext, current: Draft, instruction: str) -> Draft:
        # No model to apply the instruction; keep the current draft
        return current

    def close_insights(self, summary: CloseSummary) -> CloseInsights:
        return CloseInsights(insights=deterministic_insights(summary))
