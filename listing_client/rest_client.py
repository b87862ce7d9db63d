from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from listing_core.errors import (
    InvalidMutation,
    ListingSyncError,
    PersistenceFailure,
    TransportUnavailable,
    Unauthorized,
)
from listing_core.types import Listing, require_id

from listing_client import settings


class ListingsRestClient:
    """REST fallback for callers without a live connection. Never retries."""

    def __init__(
        self,
        base_url: str | None = None,
        admin_token: str | None = None,
        timeout_s: float | None = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (base_url or settings.HUB_REST_BASE_URL).rstrip("/")
        self.admin_token = settings.ADMIN_TOKEN if admin_token is None else admin_token
        self.timeout_s = settings.REST_TIMEOUT_S if timeout_s is None else float(timeout_s)
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.admin_token:
            headers["x-admin-token"] = self.admin_token
        return headers

    def _request(self, method: str, path: str, body: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(
                method,
                url,
                json=body,
                headers=self._headers(),
                timeout=self.timeout_s,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransportUnavailable(f"{method} {url} failed: {exc}") from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = {"error": resp.text}
        if resp.status_code == 401:
            raise Unauthorized(payload.get("error", "Unauthorized") if isinstance(payload, dict) else "Unauthorized")
        if resp.status_code == 400:
            raise InvalidMutation(payload.get("error", "bad request") if isinstance(payload, dict) else "bad request")
        if resp.status_code >= 500:
            raise PersistenceFailure(f"{method} {url} -> {resp.status_code}: {payload}")
        if resp.status_code >= 300:
            raise ListingSyncError(f"{method} {url} -> {resp.status_code}: {payload}")
        return payload

    def get_listings(self) -> List[Listing]:
        return self._request("GET", "/api/listings")

    def login(self, password: str) -> bool:
        """Check ``password`` and adopt it as the admin token on success."""
        self._request("POST", "/api/admin/login", {"password": password})
        self.admin_token = password
        return True

    def create_listing(self, listing: Listing) -> Listing:
        require_id(listing)
        return self._request("POST", "/api/listings", listing)["listing"]

    def update_listing(self, lid: str, fields: Dict[str, Any]) -> Listing:
        lid = require_id(lid)
        return self._request("PUT", f"/api/listings/{quote(lid, safe='')}", fields)["listing"]

    def delete_listing(self, lid: str) -> None:
        lid = require_id(lid)
        self._request("DELETE", f"/api/listings/{quote(lid, safe='')}")
