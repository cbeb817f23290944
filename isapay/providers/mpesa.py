"""
Mobile-Money-A adapter (Safaricom M-Pesa, Daraja STK push).

Initiate never returns a redirect URL: M-Pesa pushes a PIN prompt to the
payer's phone and the client polls for the outcome. The STK push returns a
``CheckoutRequestID`` which we keep as the reference id, since the callback
identifies the payment by it.
"""

import base64
import logging
from datetime import datetime
from typing import Any, Optional

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

logger = logging.getLogger("isapay.providers.mpesa")


def map_mpesa_status(code: Any) -> TransactionStatus:
    """ResultCode 0 is success, any other code is failure, no code yet is pending."""
    if code is None:
        return TransactionStatus.PENDING
    if code == 0 or code == "0":
        return TransactionStatus.SUCCESS
    return TransactionStatus.FAILED


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    raw = f"{shortcode}{passkey}{timestamp}".encode("utf-8")
    return base64.b64encode(raw).decode("utf-8")


class MpesaAdapter(ProviderAdapter):
    provider = Provider.MPESA

    @property
    def has_credentials(self) -> bool:
        s = self.settings
        return bool(s.mpesa_consumer_key and s.mpesa_consumer_secret and s.mpesa_shortcode and s.mpesa_passkey)

    def validate_request(self, request: InitiateRequest) -> None:
        if self.has_credentials and not request.phone_number:
            raise InvalidRequestError("M-Pesa payments require a phone_number")

    async def initiate(self, request: InitiateRequest) -> ProviderResult:
        if not self.has_credentials:
            # Sandbox mode: record the attempt, no device prompt is sent
            return self._pending(
                request,
                metadata={"shortcode": self.settings.mpesa_shortcode, "has_keys": False},
            )
        self.validate_request(request)

        token = await self._access_token()
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        shortcode = self.settings.mpesa_shortcode
        payload = {
            "BusinessShortCode": shortcode,
            "Password": stk_password(shortcode, self.settings.mpesa_passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(round(request.amount)),
            "PartyA": request.phone_number,
            "PartyB": shortcode,
            "PhoneNumber": request.phone_number,
            "CallBackURL": request.callback_url or self.settings.mpesa_callback_url,
            "AccountReference": (request.order_id or request.transaction_id)[:12],
            "TransactionDesc": (request.description or "Payment")[:13],
        }
        response = await self._call(
            "POST",
            f"{self.settings.mpesa_base_url}/mpesa/stkpush/v1/processrequest",
            headers={"Authorization": f"Bearer {token}"},
            json=payload,
        )
        data = self._json(response)

        if str(data.get("ResponseCode", "")) != "0":
            raise PermanentError(
                f"M-Pesa STK push rejected: {data.get('ResponseDescription') or data.get('errorMessage')}",
                status_code=502,
            )

        checkout_id = as_str(data.get("CheckoutRequestID"))
        logger.info("M-Pesa STK push sent for %s (checkout=%s)", request.transaction_id, checkout_id)
        return self._pending(
            request,
            reference_id=checkout_id,
            metadata={
                "merchant_request_id": data.get("MerchantRequestID"),
                "customer_message": data.get("CustomerMessage"),
                "has_keys": True,
            },
        )

    async def verify(self, webhook: WebhookRequest) -> Optional[Confirmation]:
        if not verify_hmac_signature(
            self.provider.value,
            self.settings.mpesa_webhook_secret,
            webhook.headers,
            webhook.body,
            require_secret=self.settings.webhook_require_signature,
        ):
            return None

        body = webhook.json()
        callback = dig(body, "Body", "stkCallback")
        if not isinstance(callback, dict):
            callback = {}
        return Confirmation(
            status=map_mpesa_status(callback.get("ResultCode")),
            transaction_id=as_str(body.get("transaction_id")),
            reference_id=as_str(callback.get("CheckoutRequestID") or body.get("reference_id")),
        )

    async def _access_token(self) -> str:
        response = await self._call(
            "GET",
            f"{self.settings.mpesa_base_url}/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(self.settings.mpesa_consumer_key, self.settings.mpesa_consumer_secret),
        )
        token = self._json(response).get("access_token")
        if not token:
            raise PermanentError("M-Pesa token response has no access_token", status_code=502)
        return token
