"""Drafters: template draft, remote drafter over HTTP (mocked), fallback wrappers, factory."""

from datetime import date
from unittest.mock import MagicMock, patch

import pytest
import requests

from closeboard.core.config import Settings
from closeboard.drafting.base import TemplateDrafter
from closeboard.drafting.factory import draft_with_fallback, get_drafter, refine_with_fallback
from closeboard.drafting.remote import RemoteDrafter
from closeboard.drafting.schema import Draft, DraftContext, DraftRecipient

pytestmark = [pytest.mark.fast]


def _context(**overrides) -> DraftContext:
    values = {
        "job_name": "Bank reconciliation",
        "description": "Need the January statement.",
        "due_date": date(2026, 2, 5),
        "recipients": [DraftRecipient(first_name="Ada", email="ada@example.com")],
    }
    values.update(overrides)
    return DraftContext(**values)


def _response(payload: dict) -> MagicMock:
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


def test_template_draft_mentions_job_due_date_and_form_link():
    draft = TemplateDrafter().draft(_context(form_link=True, sender_name="Sam"))
    assert draft.subject == "Request: Bank reconciliation"
    assert draft.body.startswith("Hi {{First Name}},")
    assert "February 5, 2026" in draft.body
    assert "{{Form Link}}" in draft.body
    assert draft.body.endswith("Best regards,\nSam")


def test_template_refine_keeps_current_draft():
    current = Draft(subject="s", body="b")
    assert TemplateDrafter().refine(_context(), current, "make it shorter") == current


def test_get_drafter():
    assert isinstance(get_drafter("template"), TemplateDrafter)
    settings = Settings(drafting_endpoint="http://drafter.local/api/")
    assert isinstance(get_drafter("remote", settings), RemoteDrafter)
    with pytest.raises(ValueError, match="Unknown drafter"):
        get_drafter("gpt")


def test_remote_drafter_requires_endpoint():
    with pytest.raises(ValueError):
        RemoteDrafter("")


def test_remote_drafter_posts_prompt_and_prefers_templates():
    drafter = RemoteDrafter("http://drafter.local/api/", timeout=5)
    payload = {"subject": "plain", "body": "plain", "subject_template": "Hi {{First Name}}", "body_template": "Body"}
    with patch.object(drafter._session, "post", return_value=_response(payload)) as post:
        draft = drafter.draft(_context())
    assert draft == Draft(subject="Hi {{First Name}}", body="Body")
    args, kwargs = post.call_args
    assert args[0] == "http://drafter.local/api/draft"
    assert kwargs["timeout"] == 5
    assert kwargs["json"]["deadline"] == "2026-02-05"
    assert "Bank reconciliation" in kwargs["json"]["prompt"]


def test_draft_with_fallback_uses_template_on_http_error():
    drafter = RemoteDrafter("http://drafter.local")
    with patch.object(drafter._session, "post", side_effect=requests.ConnectionError("refused")):
        result = draft_with_fallback(drafter, _context())
    assert result.used_fallback
    assert "refused" in result.fallback_reason
    assert result.draft.subject == "Request: Bank reconciliation"


def test_draft_with_fallback_on_empty_response():
    drafter = RemoteDrafter("http://drafter.local")
    with patch.object(drafter._session, "post", return_value=_response({"subject": ""})):
        result = draft_with_fallback(drafter, _context())
    assert result.used_fallback


def test_refine_with_fallback_keeps_draft_on_failure():
    drafter = RemoteDrafter("http://drafter.local")
    current = Draft(subject="Keep", body="Me")
    with patch.object(drafter._session, "post", side_effect=requests.Timeout("slow")):
        result = refine_with_fallback(drafter, _context(), current, "friendlier")
    assert result.refinement_failed
    assert result.draft == current


def test_refine_with_fallback_success():
    drafter = RemoteDrafter("http://drafter.local")
    with patch.object(drafter._session, "post", return_value=_response({"subject": "New", "body": "Text"})):
        result = refine_with_fallback(drafter, _context(), Draft(subject="Old", body="Old"), "rewrite")
    assert not result.refinement_failed
    assert result.draft == Draft(subject="New", body="Text")
