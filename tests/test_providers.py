"""Tests for the four provider adapters against stubbed provider APIs."""

import base64
import json

import httpx
import pytest

from isapay.engine.retry import PermanentError, ProviderError
from isapay.models.enums import Provider, TransactionStatus
from isapay.models.transaction import new_transaction_id
from isapay.providers.airtel import AirtelAdapter
from isapay.providers.base import InitiateRequest, InvalidRequestError, WebhookRequest
from isapay.providers.card_bank import CardBankAdapter
from isapay.providers.mpesa import MpesaAdapter, stk_password
from isapay.providers.paypal import PaypalAdapter
from tests.conftest import AIRTEL_SECRET, CARD_SECRET, MPESA_SECRET, json_response, sign


def _request(**overrides) -> InitiateRequest:
    values = dict(
        transaction_id=new_transaction_id(),
        user_id="u1",
        amount=500.0,
        currency="KES",
        phone_number="254700000000",
    )
    values.update(overrides)
    return InitiateRequest(**values)


def _webhook(payload: dict, secret: str = None, extra_headers: dict = None) -> WebhookRequest:
    body = json.dumps(payload).encode()
    headers = dict(extra_headers or {})
    if secret:
        body, signature = sign(secret, payload)
        headers["X-Isa-Signature"] = signature
    return WebhookRequest.from_raw(headers, body)


class TestCardBank:
    @pytest.mark.asyncio
    async def test_hosted_flow_without_credentials(self, settings, http_client, provider_stub):
        adapter = CardBankAdapter(settings, client=http_client)
        req = _request()
        result = await adapter.initiate(req)

        assert result.provider == Provider.CARD_BANK
        assert result.status == TransactionStatus.PENDING
        assert result.redirect_url == f"{settings.card_checkout_url}/{req.transaction_id}"
        assert result.metadata["has_keys"] is False
        assert provider_stub.requests == []

    @pytest.mark.asyncio
    async def test_submit_order_flow(self, live_settings, http_client, provider_stub):
        adapter = CardBankAdapter(live_settings, client=http_client)
        req = _request(order_id="ORD-9", callback_url="https://shop.test/done")
        result = await adapter.initiate(req)

        assert result.redirect_url == "https://pay.pesapal.test/iframe?OrderTrackingId=TRACK-1"
        assert result.reference_id == "TRACK-1"

        order_call = provider_stub.calls("/v3/api/Transactions/SubmitOrderRequest")[0]
        assert order_call.headers["authorization"] == "Bearer pesapal-token"
        sent = json.loads(order_call.content)
        assert sent["id"] == req.transaction_id
        assert sent["callback_url"] == "https://shop.test/done"
        assert sent["notification_id"] == "ipn-1"

    @pytest.mark.asyncio
    async def test_order_without_redirect_is_malformed(self, live_settings, http_client, provider_stub):
        provider_stub.add("POST", "/v3/api/Transactions/SubmitOrderRequest",
                          json_response(200, {"order_tracking_id": "TRACK-1"}))
        adapter = CardBankAdapter(live_settings, client=http_client)
        with pytest.raises(PermanentError):
            await adapter.initiate(_request())

    @pytest.mark.asyncio
    async def test_verify_signed_callback(self, settings, http_client):
        adapter = CardBankAdapter(settings, client=http_client)
        confirmation = await adapter.verify(_webhook(
            {"transaction_id": "t1", "status": "PAID", "OrderTrackingId": "TRACK-1"}, secret=CARD_SECRET,
        ))
        assert confirmation.status == TransactionStatus.SUCCESS
        assert confirmation.transaction_id == "t1"
        assert confirmation.reference_id == "TRACK-1"

    @pytest.mark.asyncio
    async def test_verify_rejects_bad_signature(self, settings, http_client):
        adapter = CardBankAdapter(settings, client=http_client)
        webhook = _webhook({"transaction_id": "t1", "status": "PAID"}, extra_headers={"X-Isa-Signature": "00"})
        assert await adapter.verify(webhook) is None


class TestMpesa:
    @pytest.mark.asyncio
    async def test_sandbox_without_credentials(self, settings, http_client, provider_stub):
        result = await MpesaAdapter(settings, client=http_client).initiate(_request())
        assert result.status == TransactionStatus.PENDING
        assert result.redirect_url is None
        assert result.metadata["has_keys"] is False
        assert provider_stub.requests == []

    @pytest.mark.asyncio
    async def test_stk_push(self, live_settings, http_client, provider_stub):
        req = _request(amount=99.6)
        result = await MpesaAdapter(live_settings, client=http_client).initiate(req)

        assert result.redirect_url is None
        assert result.reference_id == "ws_CO_191220191020363925"
        assert result.metadata["merchant_request_id"] == "29115-34620561-1"

        token_call = provider_stub.calls("/oauth/v1/generate")[0]
        expected_basic = base64.b64encode(b"mk:ms").decode()
        assert token_call.headers["authorization"] == f"Basic {expected_basic}"

        push = json.loads(provider_stub.calls("/mpesa/stkpush/v1/processrequest")[0].content)
        assert push["Amount"] == 100
        assert push["PhoneNumber"] == "254700000000"
        assert push["Password"] == stk_password("174379", "passkey", push["Timestamp"])
        assert push["CallBackURL"] == "https://example.com/mpesa"

    @pytest.mark.asyncio
    async def test_stk_push_rejected(self, live_settings, http_client, provider_stub):
        provider_stub.add("POST", "/mpesa/stkpush/v1/processrequest",
                          json_response(200, {"ResponseCode": "1", "ResponseDescription": "Invalid"}))
        with pytest.raises(PermanentError, match="Invalid"):
            await MpesaAdapter(live_settings, client=http_client).initiate(_request())

    @pytest.mark.asyncio
    async def test_phone_number_required_with_credentials(self, live_settings, settings, http_client, provider_stub):
        adapter = MpesaAdapter(live_settings, client=http_client)
        with pytest.raises(InvalidRequestError):
            adapter.validate_request(_request(phone_number=None))
        with pytest.raises(InvalidRequestError):
            await adapter.initiate(_request(phone_number=None))
        assert provider_stub.requests == []

        # Sandbox mode never prompts a device, so no phone is needed
        MpesaAdapter(settings, client=http_client).validate_request(_request(phone_number=None))

    @pytest.mark.asyncio
    async def test_verify_callback(self, settings, http_client):
        payload = {"Body": {"stkCallback": {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": "ws_CO_1",
            "ResultCode": 0,
            "ResultDesc": "The service request is processed successfully.",
        }}}
        confirmation = await MpesaAdapter(settings, client=http_client).verify(_webhook(payload, MPESA_SECRET))
        assert confirmation.status == TransactionStatus.SUCCESS
        assert confirmation.transaction_id is None
        assert confirmation.reference_id == "ws_CO_1"

    @pytest.mark.asyncio
    async def test_verify_unsigned_when_secret_missing(self, settings, http_client):
        unsigned = settings.model_copy(update={"mpesa_webhook_secret": None})
        adapter = MpesaAdapter(unsigned, client=http_client)
        assert await adapter.verify(_webhook({"transaction_id": "t1"})) is None

        permissive = unsigned.model_copy(update={"webhook_require_signature": False})
        confirmation = await MpesaAdapter(permissive, client=http_client).verify(_webhook({"transaction_id": "t1"}))
        assert confirmation.status == TransactionStatus.PENDING
        assert confirmation.transaction_id == "t1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("callback", ["oops", ["ResultCode", 0], 0])
    async def test_verify_malformed_stk_callback(self, settings, http_client, callback):
        payload = {"transaction_id": "t1", "Body": {"stkCallback": callback}}
        confirmation = await MpesaAdapter(settings, client=http_client).verify(_webhook(payload, MPESA_SECRET))
        assert confirmation.status == TransactionStatus.PENDING
        assert confirmation.transaction_id == "t1"
        assert confirmation.reference_id is None


class TestAirtel:
    def test_phone_number_required_with_credentials(self, live_settings, settings, http_client):
        with pytest.raises(InvalidRequestError, match="phone_number"):
            AirtelAdapter(live_settings, client=http_client).validate_request(_request(phone_number=None))
        AirtelAdapter(settings, client=http_client).validate_request(_request(phone_number=None))

    @pytest.mark.asyncio
    async def test_collection_request(self, live_settings, http_client, provider_stub):
        req = _request()
        result = await AirtelAdapter(live_settings, client=http_client).initiate(req)

        assert result.redirect_url is None
        assert result.reference_id == "AIRTEL-REF-1"

        call = provider_stub.calls("/merchant/v1/payments/")[0]
        assert call.headers["x-country"] == "KE"
        assert call.headers["x-currency"] == "KES"
        sent = json.loads(call.content)
        assert sent["transaction"]["id"] == req.transaction_id
        assert sent["subscriber"]["msisdn"] == "254700000000"

    @pytest.mark.asyncio
    async def test_collection_rejected(self, live_settings, http_client, provider_stub):
        provider_stub.add("POST", "/merchant/v1/payments/", json_response(200, {
            "status": {"success": False, "message": "Invalid MSISDN"},
        }))
        with pytest.raises(PermanentError, match="Invalid MSISDN"):
            await AirtelAdapter(live_settings, client=http_client).initiate(_request())

    @pytest.mark.asyncio
    async def test_verify_callback(self, settings, http_client):
        payload = {"transaction": {"id": "t-airtel", "status": "completed", "airtel_money_id": "MP210603"}}
        confirmation = await AirtelAdapter(settings, client=http_client).verify(_webhook(payload, AIRTEL_SECRET))
        assert confirmation.status == TransactionStatus.SUCCESS
        assert confirmation.transaction_id == "t-airtel"
        assert confirmation.reference_id == "MP210603"


class TestPaypal:
    @pytest.mark.asyncio
    async def test_create_order(self, settings, http_client, provider_stub):
        req = _request(currency="USD", amount=12.5, order_id="ORD-1")
        result = await PaypalAdapter(settings, client=http_client).initiate(req)

        assert result.redirect_url == "https://www.paypal.test/checkoutnow?token=PAYPAL-ORDER-1"
        assert result.reference_id == "PAYPAL-ORDER-1"

        token_call = provider_stub.calls("/v1/oauth2/token")[0]
        assert token_call.headers["authorization"].startswith("Basic ")
        assert b"grant_type=client_credentials" in token_call.content

        order = json.loads(provider_stub.calls("/v2/checkout/orders")[0].content)
        unit = order["purchase_units"][0]
        assert order["intent"] == "CAPTURE"
        assert unit["custom_id"] == req.transaction_id
        assert unit["reference_id"] == "ORD-1"
        assert unit["amount"] == {"currency_code": "USD", "value": "12.50"}

    @pytest.mark.asyncio
    async def test_order_without_approve_link(self, settings, http_client, provider_stub):
        provider_stub.add("POST", "/v2/checkout/orders", json_response(201, {"id": "X", "links": []}))
        with pytest.raises(PermanentError):
            await PaypalAdapter(settings, client=http_client).initiate(_request())

    @pytest.mark.asyncio
    async def test_token_failure_is_provider_error(self, settings, http_client, provider_stub):
        provider_stub.add("POST", "/v1/oauth2/token", json_response(503, {}))
        with pytest.raises(ProviderError):
            await PaypalAdapter(settings, client=http_client).initiate(_request())
        assert len(provider_stub.calls("/v1/oauth2/token")) == 2  # one retry

    @pytest.mark.asyncio
    async def test_verify_posts_transmission_headers(self, settings, http_client, provider_stub):
        event = {
            "event_type": "PAYMENT.CAPTURE.COMPLETED",
            "resource": {
                "id": "CAPTURE-1",
                "status": "COMPLETED",
                "custom_id": "t-pp",
                "supplementary_data": {"related_ids": {"order_id": "PAYPAL-ORDER-1"}},
            },
        }
        headers = {
            "PAYPAL-TRANSMISSION-ID": "tid",
            "PAYPAL-TRANSMISSION-TIME": "2024-01-01T00:00:00Z",
            "PAYPAL-CERT-URL": "https://api.paypal.test/cert",
            "PAYPAL-AUTH-ALGO": "SHA256withRSA",
            "PAYPAL-TRANSMISSION-SIG": "sig",
        }
        confirmation = await PaypalAdapter(settings, client=http_client).verify(_webhook(event, extra_headers=headers))

        assert confirmation.status == TransactionStatus.SUCCESS
        assert confirmation.transaction_id == "t-pp"
        assert confirmation.reference_id == "PAYPAL-ORDER-1"

        sent = json.loads(provider_stub.calls("/v1/notifications/verify-webhook-signature")[0].content)
        assert sent["transmission_id"] == "tid"
        assert sent["auth_algo"] == "SHA256withRSA"
        assert sent["cert_url"] == "https://api.paypal.test/cert"
        assert sent["transmission_sig"] == "sig"
        assert sent["transmission_time"] == "2024-01-01T00:00:00Z"
        assert sent["webhook_id"] == "WH-123"
        assert sent["webhook_event"] == event

    @pytest.mark.asyncio
    async def test_verify_failure_status(self, settings, http_client, provider_stub):
        provider_stub.add("POST", "/v1/notifications/verify-webhook-signature",
                          json_response(200, {"verification_status": "FAILURE"}))
        webhook = _webhook({"event_type": "PAYMENT.CAPTURE.COMPLETED", "resource": {"custom_id": "t"}})
        assert await PaypalAdapter(settings, client=http_client).verify(webhook) is None

    @pytest.mark.asyncio
    async def test_verify_rejected_request(self, settings, http_client, provider_stub):
        provider_stub.add("POST", "/v1/notifications/verify-webhook-signature", json_response(400, {}))
        webhook = _webhook({"event_type": "PAYMENT.CAPTURE.COMPLETED"})
        assert await PaypalAdapter(settings, client=http_client).verify(webhook) is None


class TestTransportErrors:
    @pytest.mark.asyncio
    async def test_network_failure_becomes_provider_error(self, settings):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(boom)) as client:
            with pytest.raises(ProviderError) as exc:
                await PaypalAdapter(settings, client=client).initiate(_request())
        assert exc.value.retriable is True
