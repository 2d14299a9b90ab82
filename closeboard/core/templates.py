"""Merge-tag rendering for request emails: {{First Name}} style tags against per-recipient data."""

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

TAG_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
MISSING_PATTERN = re.compile(r"\[MISSING:\s*([^\]]+)\]")
_GREETING_MISSING = re.compile(
    r"Dear\s+\[MISSING:\s*(?:first[\s_]*name)\]\s*,",
    re.IGNORECASE,
)


@dataclass
class RenderResult:
    rendered: str
    missing_tags: list[str] = field(default_factory=list)
    used_tags: list[str] = field(default_factory=list)


def normalize_tag_name(name: str) -> str:
    """'  First   Name ' -> 'first_name'; hyphens and spaces both become underscores."""
    collapsed = re.sub(r"\s+", " ", name.strip().lower())
    return collapsed.replace("-", "_").replace(" ", "_")


def extract_tags(template: str) -> list[str]:
    """Tag names in order of appearance (trimmed, not normalized), duplicates kept."""
    return [m.group(1).strip() for m in TAG_PATTERN.finditer(template or "") if m.group(1).strip()]


def render_template(template: str, data: Mapping[str, Any]) -> RenderResult:
    """
    Replace every {{Tag}} with the matching value from data.

    Keys and tags are compared after normalize_tag_name, so {{first name}}, {{First_Name}} and
    {{FIRST-NAME}} all read data["First Name"]. Blank or absent values render as
    "[MISSING: Tag]", except a "Dear [MISSING: First Name]," greeting, which becomes "Hello,".
    """
    values = {
        normalize_tag_name(str(k)): ("" if v is None else str(v).strip())
        for k, v in data.items()
    }
    result = RenderResult(rendered="")

    def _substitute(match: re.Match) -> str:
        tag = match.group(1).strip()
        if not tag:
            return match.group(0)
        key = normalize_tag_name(tag)
        value = values.get(key, "")
        if value:
            if key not in result.used_tags:
                result.used_tags.append(key)
            return value
        if key not in result.missing_tags:
            result.missing_tags.append(key)
        return f"[MISSING: {tag}]"

    rendered = TAG_PATTERN.sub(_substitute, template or "")
    result.rendered = _GREETING_MISSING.sub("Hello,", rendered)
    return result


def find_unresolved_tokens(content: str) -> list[str]:
    """Literal {{...}} tokens still present in already-rendered content."""
    seen: list[str] = []
    for m in TAG_PATTERN.finditer(content or ""):
        if m.group(0) not in seen:
            seen.append(m.group(0))
    return seen


def find_missing_placeholders(content: str) -> list[str]:
    seen: list[str] = []
    for m in MISSING_PATTERN.finditer(content or ""):
        name = m.group(1).strip()
        if name not in seen:
            seen.append(name)
    return seen
