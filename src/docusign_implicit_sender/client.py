from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

REST_PREFIX = "/restapi/v2.1"


class ApiError(RuntimeError):
    pass


@dataclass(frozen=True)
class ApiContext:
    base_uri: str
    account_id: str

    def account_url(self) -> str:
        return f"{self.base_uri.rstrip('/')}{REST_PREFIX}/accounts/{self.account_id}"


class DocuSignClient:
    """Thin DocuSign eSignature REST client. No retries: callers decide."""

    def __init__(self, http: httpx.Client, ctx: ApiContext, access_token: str, sdk_id: str):
        self._http = http
        self._ctx = ctx
        self._access_token = access_token
        self._sdk_id = sdk_id

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
            "X-DocuSign-SDK": self._sdk_id,
        }

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.is_success:
            return
        raise ApiError(f"{resp.request.method} {resp.request.url} -> {resp.status_code}: {resp.text}")

    def get_account(self) -> dict[str, Any]:
        """Account information, including the user-facing ``externalAccountId``."""
        resp = self._http.get(self._ctx.account_url(), headers=self._headers())
        self._raise_for_status(resp)
        return resp.json()

    def create_envelope(self, definition: dict[str, Any]) -> httpx.Response:
        """POST an envelope definition and hand back the raw response.

        The status is not checked here; rate-limit headers are needed on both
        outcomes.
        """
        url = f"{self._ctx.account_url()}/envelopes"
        return self._http.post(url, headers=self._headers(), json=definition)
