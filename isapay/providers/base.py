"""
Provider adapter interface.

Every external payment rail (Pesapal, M-Pesa, Airtel Money, PayPal)
implements the same two operations:

  - ``initiate``: run the provider handshake for a new payment attempt and
    return a normalized ``ProviderResult``.
  - ``verify``: authenticate an inbound webhook and map the provider's
    native status vocabulary onto ``TransactionStatus``. Returns None when
    the callback is not authentic.

Shared concerns (HTTP client, timeouts, error classification, retry) live
on the base class.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from isapay.config import Settings
from isapay.engine.retry import (
    RETRIABLE_STATUS_CODES,
    PermanentError,
    ProviderError,
    RateLimitError,
    RetryPolicy,
)
from isapay.models.enums import Provider, TransactionStatus

logger = logging.getLogger("isapay.providers")


class InvalidRequestError(ValueError):
    """Initiate request the adapter can never fulfil, detected before any provider call."""


@dataclass
class InitiateRequest:
    """A validated initiate call, with the gateway-assigned transaction id."""

    transaction_id: str
    user_id: str
    amount: float
    currency: str
    order_id: Optional[str] = None
    description: Optional[str] = None
    phone_number: Optional[str] = None
    callback_url: Optional[str] = None


@dataclass
class ProviderResult:
    """Normalized result of a provider initiate handshake."""

    transaction_id: str
    provider: Provider
    status: TransactionStatus
    amount: float
    currency: str
    redirect_url: Optional[str] = None
    reference_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


@dataclass
class WebhookRequest:
    """Raw inbound callback. Header names are lower-cased."""

    headers: Mapping[str, str]
    body: bytes
    _parsed: Optional[dict[str, Any]] = field(default=None, repr=False)

    @classmethod
    def from_raw(cls, headers: Mapping[str, str], body: bytes) -> "WebhookRequest":
        return cls(headers={k.lower(): v for k, v in headers.items()}, body=body)

    def json(self) -> dict[str, Any]:
        """Parse the body as a JSON object. Raises ValueError otherwise."""
        if self._parsed is None:
            data = json.loads(self.body or b"null")
            if not isinstance(data, dict):
                raise ValueError("Webhook body must be a JSON object")
            self._parsed = data
        return self._parsed


@dataclass
class Confirmation:
    """Authenticated webhook outcome."""

    status: TransactionStatus
    transaction_id: Optional[str] = None
    reference_id: Optional[str] = None


def dig(data: Any, *path: str) -> Any:
    """Walk nested dicts, returning None as soon as a key is missing."""
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def as_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class ProviderAdapter(ABC):
    """Abstract base class for provider adapters."""

    provider: Provider

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = client
        self._owns_client = client is None
        self.retry_policy = RetryPolicy.from_settings(settings)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.provider_timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    def validate_request(self, request: InitiateRequest) -> None:
        """
        Reject a request this adapter cannot serve.

        The gateway calls this before anything is sent to the provider or
        written to the ledger. Raises InvalidRequestError.
        """

    @abstractmethod
    async def initiate(self, request: InitiateRequest) -> ProviderResult:
        """
        Start a payment attempt with the provider.

        Raises:
            ProviderError: Transport failure or retriable provider error
                (after retries are exhausted).
            PermanentError: Provider rejected the request or answered with
                a response we cannot use.
        """
        ...

    @abstractmethod
    async def verify(self, webhook: WebhookRequest) -> Optional[Confirmation]:
        """
        Authenticate a webhook and map it to an internal status.

        Returns None when the callback fails authentication.
        """
        ...

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Single HTTP attempt with provider errors classified for retry."""
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError(f"{self.provider.value} timeout: {e}", status_code=504) from e
        except httpx.TransportError as e:
            raise ProviderError(f"{self.provider.value} transport error: {e}", status_code=502) from e

        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            try:
                wait = float(retry_after) if retry_after else None
            except ValueError:
                wait = None
            raise RateLimitError(f"{self.provider.value} rate limited", retry_after=wait)
        if response.status_code in RETRIABLE_STATUS_CODES or response.status_code >= 500:
            raise ProviderError(
                f"{self.provider.value} returned {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise PermanentError(
                f"{self.provider.value} rejected request ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    async def _call(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        return await self.retry_policy.run(self._send, method, url, **kwargs)

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise PermanentError(f"{self.provider.value} returned invalid JSON", status_code=502) from e
        if not isinstance(data, dict):
            raise PermanentError(f"{self.provider.value} returned unexpected payload", status_code=502)
        return data

    def _pending(self, request: InitiateRequest, **fields: Any) -> ProviderResult:
        return ProviderResult(
            transaction_id=request.transaction_id,
            provider=self.provider,
            status=TransactionStatus.PENDING,
            amount=request.amount,
            currency=request.currency,
            **fields,
        )
