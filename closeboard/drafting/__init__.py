"""Request drafting: data contracts and drafter abstraction."""

from closeboard.drafting.schema import Draft, DraftContext, DraftResult
from closeboard.drafting.base import BaseDrafter, TemplateDrafter
from closeboard.drafting.factory import get_drafter

__all__ = [
    "BaseDrafter",
    "Draft",
    "DraftContext",
    "DraftResult",
    "TemplateDrafter",
    "get_drafter",
]
