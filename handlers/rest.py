# ================================================================
# File     : rest.py
# Purpose  : Read-only REST client shared by Graph and ARM handlers
# Notes    : GET + pagination. No retries: a failed call raises
#            ApiError and the caller decides whether it is fatal.
# ================================================================

from typing import Dict, Any, List, Optional

import requests

from core.errors import ApiError
from core.utils import fncPrintMessage


class RestClient:
    root: str = ""
    scope: str = ""
    next_link_key: str = "nextLink"
    timeout: int = 60

    def __init__(self, credential, session: Optional[requests.Session] = None):
        self.credential = credential
        self.http = session or requests.Session()

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credential.get_token(self.scope)}",
            "Accept": "application/json",
        }

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith("https://"):
            return endpoint
        return f"{self.root}/{endpoint.strip().lstrip('/')}"

    def _default_params(self) -> Dict[str, Any]:
        return {}

    # ---------- HTTP handling ----------

    def _handle_response(self, response: requests.Response) -> Dict[str, Any]:
        status = response.status_code

        if status == 200:
            return response.json()

        if status >= 400:
            fncPrintMessage(f"API Error [{status}] -> {response.text[:300]}", "debug")
            raise ApiError(status, response.url, response.text[:200])

        try:
            return response.json()
        except ValueError:
            return {"status": status, "text": response.text}

    def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            resp = self.http.get(url, headers=self._auth_headers(), params=params, timeout=self.timeout)
        except requests.RequestException as ex:
            raise ApiError(0, url, str(ex)) from ex
        return self._handle_response(resp)

    # ---------- Public API ----------

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Single GET; use get_all for paginated collections."""
        url = self._url(endpoint)
        merged = {**self._default_params(), **(params or {})}
        fncPrintMessage(f"GET {url}", "debug")
        return self._request(url, params=merged)

    def get_all(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Retrieve every item of a paginated collection as a flat list.
        Next-page links already carry their query string, so params
        only apply to the first request.
        """
        url = self._url(endpoint)
        fncPrintMessage(f"GET (all pages) {url}", "debug")

        data = self._request(url, params={**self._default_params(), **(params or {})})
        if isinstance(data, dict) and "value" not in data:
            return [data]

        items: List[Dict[str, Any]] = list(data.get("value", []))
        next_link = data.get(self.next_link_key)
        while next_link:
            fncPrintMessage(f"Following nextLink -> {next_link}", "debug")
            page = self._request(next_link)
            items.extend(page.get("value", []))
            next_link = page.get(self.next_link_key)
        return items
