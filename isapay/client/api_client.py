"""Thin async client for the ISA Pay HTTP surface."""

from typing import Any, Optional

import httpx


class IsaPayClientError(Exception):
    """Non-2xx answer from the gateway."""

    def __init__(self, message: str, status_code: int, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class IsaPayClient:
    """
    Calls ``initiate`` and ``status`` on a mounted ISA Pay service.

    ``access_token`` is the caller's session token; it is forwarded as a
    bearer credential and otherwise opaque to the gateway.
    """

    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def initiate(
        self,
        user_id: str,
        amount: float,
        currency: str,
        method: str,
        **optional: Any,
    ) -> dict[str, Any]:
        payload = {"user_id": user_id, "amount": amount, "currency": currency, "method": method}
        payload.update({k: v for k, v in optional.items() if v is not None})
        response = await self._client.post(f"{self.base_url}/initiate", json=payload, headers=self._headers())
        return self._unwrap(response, "initiate")

    async def status(self, transaction_id: str) -> dict[str, Any]:
        response = await self._client.get(f"{self.base_url}/status/{transaction_id}", headers=self._headers())
        return self._unwrap(response, "status")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _unwrap(response: httpx.Response, operation: str) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = response.text
        if response.is_success:
            return body
        raise IsaPayClientError(f"ISA Pay {operation} failed: {response.status_code}", response.status_code, body)
