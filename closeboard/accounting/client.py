"""HTTP client for the external accounting-sync service."""

import logging
from typing import Any
from urllib.parse import parse_qs, urlparse

import requests
from requests.adapters import HTTPAdapter

_log = logging.getLogger(__name__)

PAGE_SIZE = 200


class AccountingClient:
    """
    Reads records from the accounting service. Lists are paginated with a `next` URL
    whose `cursor` query parameter is passed back on the following request.
    """

    def __init__(self, endpoint: str, api_key: str, timeout: float = 30.0) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers["Authorization"] = f"Bearer {api_key}"
        adapter = HTTPAdapter(pool_connections=10, pool_maxsize=20)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

    def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        resp = self._session.get(f"{self._endpoint}/{path.lstrip('/')}", params=params, timeout=self._timeout)
        resp.raise_for_status()
        return resp.json()

    def fetch_all(self, path: str, modified_after: str | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"page_size": PAGE_SIZE}
        if modified_after:
            params["modified_after"] = modified_after
        records: list[dict[str, Any]] = []
        while True:
            page = self._get(path, params)
            records.extend(page.get("results") or [])
            next_url = page.get("next")
            cursor = parse_qs(urlparse(next_url).query).get("cursor", [None])[0] if next_url else None
            if not cursor:
                break
            params["cursor"] = cursor
        _log.debug("accounting_fetch path=%s records=%d", path, len(records))
        return records

    def contacts(self, modified_after: str | None = None) -> list[dict[str, Any]]:
        return self.fetch_all("contacts", modified_after)

    def accounts(self, modified_after: str | None = None) -> list[dict[str, Any]]:
        return self.fetch_all("accounts", modified_after)

    def invoices(self, modified_after: str | None = None) -> list[dict[str, Any]]:
        return self.fetch_all("invoices", modified_after)

    def payments(self, modified_after: str | None = None) -> list[dict[str, Any]]:
        return self.fetch_all("payments", modified_after)
