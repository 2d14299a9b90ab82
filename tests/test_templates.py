"""Merge-tag rendering and leftover-token detection."""

import pytest

from closeboard.core.templates import (
    extract_tags,
    find_missing_placeholders,
    find_unresolved_tokens,
    normalize_tag_name,
    render_template,
)

pytestmark = [pytest.mark.fast]


def test_normalize_tag_name():
    assert normalize_tag_name("  First   Name ") == "first_name"
    assert normalize_tag_name("Due-Date") == "due_date"


def test_extract_tags_keeps_order_and_duplicates():
    assert extract_tags("{{A}} and {{ B }} then {{A}} {{ }}") == ["A", "B", "A"]


def test_render_matches_tags_case_and_separator_insensitively():
    result = render_template(
        "Hi {{first name}}, invoice {{Invoice-Number}} is due {{DUE_DATE}}.",
        {"First Name": "Ada", "invoice number": 42, "Due Date": " 2026-01-31 "},
    )
    assert result.rendered == "Hi Ada, invoice 42 is due 2026-01-31."
    assert result.missing_tags == []
    assert result.used_tags == ["first_name", "invoice_number", "due_date"]


def test_render_marks_missing_values():
    result = render_template("Amount: {{Amount}} / {{Amount}}", {"Amount": "  "})
    assert result.rendered == "Amount: [MISSING: Amount] / [MISSING: Amount]"
    assert result.missing_tags == ["amount"]


def test_render_missing_first_name_greeting_becomes_hello():
    result = render_template("Dear {{First Name}},\nPlease send the W-9.", {})
    assert result.rendered == "Hello,\nPlease send the W-9."
    assert result.missing_tags == ["first_name"]


def test_find_unresolved_and_missing():
    assert find_unresolved_tokens("a {{x}} b {{x}} {{y}}") == ["{{x}}", "{{y}}"]
    assert find_missing_placeholders("[MISSING: Amount] and [MISSING:Due]") == ["Amount", "Due"]
    assert find_unresolved_tokens("") == []
