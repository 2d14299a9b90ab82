"""Drafter that calls an external drafting service over HTTP.

The service takes {"prompt", "available_tags", "deadline", "personalization_mode"} on POST
/draft and answers {"subject", "body"} (or "subject_template"/"body_template" when it
returns placeholder templates). Close retrospectives go to POST /close-insights with
{"prompt"} and come back as {"insights", "recommendations"}. Uses a persistent
requests.Session with connection pooling.
"""

import logging

import requests

from closeboard.boards.close_summary import CloseSummary
from closeboard.drafting.base import BaseDrafter
from closeboard.drafting.prompts import build_close_prompt, build_draft_prompt, build_refine_prompt
from closeboard.drafting.schema import CloseInsights, Draft, DraftContext

_log = logging.getLogger(__name__)


class RemoteDrafter(BaseDrafter):
    """Drafter backed by the drafting service at `endpoint`."""

    name = "remote"

    def __init__(self, endpoint: str, timeout: float = 60.0) -> None:
        if not endpoint:
            raise ValueError("Remote drafter requires drafting_endpoint")
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        adapter = requests.adapters.HTTPAdapter(pool_connections=10, pool_maxsize=20)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

    def _post(self, path: str, json_payload: dict) -> dict:
        """POST JSON to the drafting service and return the parsed response."""
        url = f"{self._endpoint}/{path.lstrip('/')}"
        resp = self._session.post(
            url,
            json=json_payload,
            headers={"Content-Type": "application/json"},
            timeout=self._timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def _generate(self, prompt: str, context: DraftContext) -> Draft:
        payload = {
            "prompt": prompt,
            "available_tags": context.available_tags,
            "deadline": context.due_date.isoformat() if context.due_date else None,
            "personalization_mode": "contact",
        }
        data = self._post("draft", payload)
        subject = data.get("subject_template") or data.get("subject")
        body = data.get("body_template") or data.get("body")
        if not isinstance(subject, str) or not isinstance(body, str) or not subject or not body:
            raise ValueError("Drafting service returned no subject/body")
        return Draft(subject=subject, body=body)

    def draft(self, context: DraftContext) -> Draft:
        return self._generate(build_draft_prompt(context), context)

    def refine(self, context: DraftContext, current: Draft, instruction: str) -> Draft:
        return self._generate(build_refine_prompt(context, current, instruction), context)

    def close_insights(self, summary: CloseSummary) -> CloseInsights:
        data = self._post("close-insights", {"prompt": build_close_prompt(summary)})
        insights = data.get("insights")
        recommendations = data.get("recommendations") or []
        if not isinstance(insights, list) or not isinstance(recommendations, list):
            raise ValueError("Drafting service returned no insights")
        return CloseInsights(
            insights=[str(i) for i in insights],
            recommendations=[str(r) for r in recommendations],
        )
