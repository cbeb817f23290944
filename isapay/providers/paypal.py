"""
PayPal adapter (Orders v2 + webhook signature verification API).

Initiate: OAuth client-credentials token, then create a CAPTURE order and
return its ``approve`` link as the redirect URL. Our transaction id rides
along as ``custom_id`` so capture webhooks can name it.

Verify: PayPal webhooks are not HMAC-signed with a shared secret. Instead we
post the five transmission headers, our webhook id and the event body back
to PayPal's verification endpoint; anything but ``SUCCESS`` is rejected.
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
    dig,
)

logger = logging.getLogger("isapay.providers.paypal")

TRANSMISSION_HEADERS = {
    "transmission_id": "paypal-transmission-id",
    "transmission_time": "paypal-transmission-time",
    "cert_url": "paypal-cert-url",
    "auth_algo": "paypal-auth-algo",
    "transmission_sig": "paypal-transmission-sig",
}


def map_paypal_status(event_type: Optional[str], resource_status: Optional[str]) -> TransactionStatus:
    e = (event_type or "").lower()
    if "payment.capture.completed" in e or resource_status == "COMPLETED":
        return TransactionStatus.SUCCESS
    if "payment.capture.denied" in e or "order.cancelled" in e or resource_status == "VOIDED":
        return TransactionStatus.FAILED
    return TransactionStatus.PENDING


def find_approve_link(links: Any) -> Optional[str]:
    for link in links or []:
        if isinstance(link, dict) and link.get("rel") == "approve" and link.get("href"):
            return link["href"]
    return None


class PaypalAdapter(ProviderAdapter):
    provider = Provider.PAYPAL

    async def initiate(self, request: InitiateRequest) -> ProviderResult:
        token = await self._access_token()
        return_url = request.callback_url or self.settings.paypal_return_url
        cancel_url = request.callback_url or self.settings.paypal_cancel_url

        response = await self._call(
            "POST",
            f"{self.settings.paypal_base_url}/v2/checkout/orders",
            headers={"Authorization": f"Bearer {token}"},
            json={
                "intent": "CAPTURE",
                "purchase_units": [
                    {
                        "reference_id": request.order_id or request.transaction_id,
                        "custom_id": request.transaction_id,
                        "description": request.description,
                        "amount": {"currency_code": request.currency, "value": f"{request.amount:.2f}"},
                    }
                ],
                "application_context": {
                    "brand_name": self.settings.paypal_brand_name,
                    "user_action": "PAY_NOW",
                    "return_url": return_url,
                    "cancel_url": cancel_url,
                },
            },
        )
        order = self._json(response)

        approve = find_approve_link(order.get("links"))
        if not approve:
            raise PermanentError("PayPal order response has no approve link", status_code=502)

        order_id = as_str(order.get("id"))
        logger.info("PayPal order %s created for %s", order_id, request.transaction_id)
        return self._pending(
            request,
            redirect_url=approve,
            reference_id=order_id,
            metadata={"order_id": order_id, "order_status": order.get("status")},
        )

    async def verify(self, webhook: WebhookRequest) -> Optional[Confirmation]:
        body = webhook.json()
        token = await self._access_token()

        payload: dict[str, Any] = {
            field: webhook.headers.get(header, "") for field, header in TRANSMISSION_HEADERS.items()
        }
        payload["webhook_id"] = self.settings.paypal_webhook_id
        payload["webhook_event"] = body

        try:
            response = await self._call(
                "POST",
                f"{self.settings.paypal_base_url}/v1/notifications/verify-webhook-signature",
                headers={"Authorization": f"Bearer {token}"},
                json=payload,
            )
        except PermanentError as e:
            logger.warning("PayPal rejected webhook verification request: %s", e)
            return None

        verification = self._json(response).get("verification_status")
        if verification != "SUCCESS":
            logger.warning(
                "PayPal webhook %s failed verification (%s)",
                payload["transmission_id"] or "-",
                verification,
            )
            return None

        resource = body.get("resource") if isinstance(body.get("resource"), dict) else {}
        order_id = dig(resource, "supplementary_data", "related_ids", "order_id") or resource.get("id")
        return Confirmation(
            status=map_paypal_status(as_str(body.get("event_type")), as_str(resource.get("status"))),
            transaction_id=as_str(body.get("transaction_id") or resource.get("custom_id")),
            reference_id=as_str(order_id),
        )

    async def _access_token(self) -> str:
        response = await self._call(
            "POST",
            f"{self.settings.paypal_base_url}/v1/oauth2/token",
            auth=(self.settings.paypal_client_id, self.settings.paypal_client_secret),
            data={"grant_type": "client_credentials"},
        )
        token = self._json(response).get("access_token")
        if not token:
            raise PermanentError("PayPal token response has no access_token", status_code=502)
        return token
