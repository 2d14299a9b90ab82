"""Factory for drafters, plus the fallback wrappers used by the request engine."""

import logging

import requests

from closeboard.boards.close_summary import CloseSummary
from closeboard.core.config import Settings
from closeboard.drafting.base import BaseDrafter, TemplateDrafter
from closeboard.drafting.schema import Draft, DraftContext, DraftResult

_log = logging.getLogger(__name__)


def get_drafter(drafter_name: str, settings: Settings | None = None) -> BaseDrafter:
    """Return a drafter by name. The remote drafter is imported lazily."""
    if drafter_name == "template":
        return TemplateDrafter()
    if drafter_name == "remote":
        from closeboard.drafting.remote import RemoteDrafter

        if settings is None:
            from closeboard.core.config import get_config

            settings = get_config()
        return RemoteDrafter(settings.drafting_endpoint, timeout=settings.drafting_timeout_seconds)
    raise ValueError(f"Unknown drafter: {drafter_name}")


def draft_with_fallback(drafter: BaseDrafter, context: DraftContext) -> DraftResult:
    """Draft with `drafter`; on failure use the template draft and report why."""
    try:
        return DraftResult(draft=drafter.draft(context))
    except (requests.RequestException, ValueError, KeyError) as e:
        _log.warning("draft_fallback drafter=%s reason=%s", drafter.name, e)
        return DraftResult(draft=TemplateDrafter().draft(context), used_fallback=True, fallback_reason=str(e))


def refine_with_fallback(drafter: BaseDrafter, context: DraftContext, current: Draft, instruction: str) -> DraftResult:
    """Refine with `drafter`; on failure keep the current draft and flag refinement_failed."""
    try:
        return DraftResult(draft=drafter.refine(context, current, instruction))
    except (requests.RequestException, ValueError, KeyError) as e:
        _log.warning("refine_failed drafter=%s reason=%s", drafter.name, e)
        return DraftResult(draft=current, refinement_failed=True, fallback_reason=str(e))


def close_insights_with_fallback(drafter: BaseDrafter, summary: CloseSummary) -> CloseSummary:
    """Attach insights from `drafter` to summary; on failure use the deterministic ones."""
    if summary.total_jobs == 0:
        return summary
    try:
        result = drafter.close_insights(summary)
    except (requests.RequestException, ValueError, KeyError) as e:
        _log.warning("close_insights_fallback drafter=%s board_id=%s reason=%s", drafter.name, summary.board_id, e)
        result = TemplateDrafter().close_insights(summary)
    return summary.model_copy(update={"insights": result.insights, "recommendations": result.recommendations})
