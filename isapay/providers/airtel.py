"""
Mobile-Money-B adapter (Airtel Money collections).

Like M-Pesa, the payer gets a prompt on their handset and no redirect URL
is returned. Our transaction id travels as ``transaction.id`` so the
callback names it directly.
"""

import logging
from typing import Optional

from isapay.engine.retry import PermanentError
from isapay.models.enums import Provider, TransactionStatus
from isapay.providers.base import (
    Confirmation,
    InitiateRequest,
    InvalidRequestError,
    ProviderAdapter,
    ProviderResult,
    WebhookRequest,
    as_str,
    dig,
)
from isapay.security.signatures import verify_hmac_signature

logger = logging.getLogger("isapay.providers.airtel")


def map_airtel_status(external: Optional[str]) -> TransactionStatus:
    s = (external or "").strip().lower()
    if s in ("success", "completed"):
        return TransactionStatus.SUCCESS
    if s in ("failed", "rejected"):
        return TransactionStatus.FAILED
    return TransactionStatus.PENDING


class AirtelAdapter(ProviderAdapter):
    provider = Provider.AIRTEL

    @property
    def has_credentials(self) -> bool:
        return bool(self.settings.airtel_client_id and self.settings.airtel_client_secret)

    def validate_request(self, request: InitiateRequest) -> None:
        if self.has_credentials and not request.phone_number:
            raise InvalidRequestError("Airtel Money payments require a phone_number")

    async def initiate(self, request: InitiateRequest) -> ProviderResult:
        if not self.has_credentials:
            return self._pending(request, metadata={"has_keys": False})
        self.validate_request(request)

        token = await self._access_token()
        country = self.settings.airtel_country
        response = await self._call(
            "POST",
            f"{self.settings.airtel_base_url}/merchant/v1/payments/",
            headers={
                "Authorization": f"Bearer {token}",
                "X-Country": country,
                "X-Currency": request.currency,
            },
            json={
                "reference": request.description or request.order_id or request.transaction_id,
                "subscriber": {"country": country, "currency": request.currency, "msisdn": request.phone_number},
                "transaction": {
                    "amount": request.amount,
                    "country": country,
                    "currency": request.currency,
                    "id": request.transaction_id,
                },
            },
        )
        data = self._json(response)

        if dig(data, "status", "success") is False:
            raise PermanentError(
                f"Airtel collection rejected: {dig(data, 'status', 'message')}",
                status_code=502,
            )

        reference = as_str(dig(data, "data", "transaction", "id"))
        logger.info("Airtel collection requested for %s (ref=%s)", request.transaction_id, reference)
        return self._pending(
            request,
            reference_id=reference,
            metadata={
                "has_keys": True,
                "airtel_status": dig(data, "data", "transaction", "status"),
                "response_code": dig(data, "status", "response_code"),
            },
        )

    async def verify(self, webhook: WebhookRequest) -> Optional[Confirmation]:
        if not verify_hmac_signature(
            self.provider.value,
            self.settings.airtel_webhook_secret,
            webhook.headers,
            webhook.body,
            require_secret=self.settings.webhook_require_signature,
        ):
            return None

        body = webhook.json()
        transaction = body.get("transaction") if isinstance(body.get("transaction"), dict) else {}
        return Confirmation(
            status=map_airtel_status(as_str(body.get("status") or transaction.get("status"))),
            transaction_id=as_str(body.get("transaction_id") or transaction.get("id")),
            reference_id=as_str(body.get("reference_id") or transaction.get("airtel_money_id") or transaction.get("id")),
        )

    async def _access_token(self) -> str:
        response = await self._call(
            "POST",
            f"{self.settings.airtel_base_url}/auth/oauth2/token",
            json={
                "client_id": self.settings.airtel_client_id,
                "client_secret": self.settings.airtel_client_secret,
                "grant_type": "client_credentials",
            },
        )
        token = self._json(response).get("access_token")
        if not token:
            raise PermanentError("Airtel token response has no access_token", status_code=502)
        return token
