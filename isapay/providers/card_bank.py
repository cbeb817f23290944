"""
Card/Bank adapter (Pesapal hosted checkout).

With API credentials configured, initiate runs the full Pesapal flow:
request an access token, submit an order request, and hand the returned
``redirect_url`` to the client. Without credentials the adapter falls back
to the minimal hosted flow, building the checkout URL from our own
transaction id. Either way the result carries a redirect URL.
"""

import logging
from typing import Any, Optional

from isapay.engine.retry import PermanentError
from isapay.models.enums import Provider, TransactionStatus
from isapay.providers.base import (
    Confirmation,
    InitiateRequest,
    ProviderAdapter,
    ProviderResult,
    WebhookRequest,
    as_str,
)
from isapay.security.signatures import verify_hmac_signature

logger = logging.getLogger("isapay.providers.card_bank")


def map_card_status(external: Optional[str]) -> TransactionStatus:
    e = (external or "").strip().lower()
    if "success" in e or e in ("paid", "approved"):
        return TransactionStatus.SUCCESS
    if "fail" in e or e in ("declined", "error"):
        return TransactionStatus.FAILED
    return TransactionStatus.PENDING


class CardBankAdapter(ProviderAdapter):
    provider = Provider.CARD_BANK

    @property
    def has_credentials(self) -> bool:
        return bool(self.settings.pesapal_consumer_key and self.settings.pesapal_consumer_secret)

    async def initiate(self, request: InitiateRequest) -> ProviderResult:
        if not self.has_credentials:
            redirect_url = f"{self.settings.card_checkout_url.rstrip('/')}/{request.transaction_id}"
            return self._pending(
                request,
                redirect_url=redirect_url,
                metadata={"flow": "hosted", "has_keys": False},
            )

        token = await self._access_token()
        response = await self._call(
            "POST",
            f"{self.settings.pesapal_base_url}/Transactions/SubmitOrderRequest",
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            json=self._order_payload(request),
        )
        data = self._json(response)

        if data.get("error"):
            raise PermanentError(f"Pesapal rejected order: {data['error']}", status_code=502)

        redirect_url = data.get("redirect_url") or data.get("payment_url")
        if not redirect_url:
            raise PermanentError("Pesapal order response has no redirect_url", status_code=502)

        tracking_id = as_str(data.get("order_tracking_id") or data.get("order_id"))
        logger.info("Pesapal order submitted for %s (tracking=%s)", request.transaction_id, tracking_id)
        return self._pending(
            request,
            redirect_url=redirect_url,
            reference_id=tracking_id,
            metadata={"flow": "submit_order", "pesapal_order_id": tracking_id},
        )

    async def verify(self, webhook: WebhookRequest) -> Optional[Confirmation]:
        if not verify_hmac_signature(
            self.provider.value,
            self.settings.card_webhook_secret,
            webhook.headers,
            webhook.body,
            require_secret=self.settings.webhook_require_signature,
        ):
            return None

        body = webhook.json()
        external = body.get("status") or body.get("TransactionStatus") or body.get("payment_status")
        return Confirmation(
            status=map_card_status(as_str(external)),
            transaction_id=as_str(body.get("transaction_id") or body.get("TransactionID")),
            reference_id=as_str(
                body.get("reference_id")
                or body.get("OrderTrackingId")
                or body.get("order_tracking_id")
                or body.get("TransactionToken")
            ),
        )

    async def _access_token(self) -> str:
        response = await self._call(
            "POST",
            f"{self.settings.pesapal_base_url}/Auth/RequestToken",
            headers={"Accept": "application/json"},
            json={
                "consumer_key": self.settings.pesapal_consumer_key,
                "consumer_secret": self.settings.pesapal_consumer_secret,
            },
        )
        data = self._json(response)
        token = data.get("token") or data.get("access_token")
        if not token:
            raise PermanentError("Pesapal token response has no token", status_code=502)
        return token

    def _order_payload(self, request: InitiateRequest) -> dict[str, Any]:
        return {
            "id": request.transaction_id,
            "currency": request.currency,
            "amount": request.amount,
            "description": request.description or f"Payment for order {request.order_id or request.transaction_id}",
            "callback_url": request.callback_url or self.settings.pesapal_callback_url,
            "notification_id": self.settings.pesapal_ipn_id,
            "billing_address": {
                "email_address": request.user_id,
                "phone_number": request.phone_number or "",
            },
        }
