"""Shared test fixtures."""

import json
from typing import Any, Callable, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from isapay.config import Settings
from isapay.engine.gateway import PaymentGateway
from isapay.models.transaction import Base
from isapay.providers.registry import build_adapters
from isapay.security.rate_limit import FixedWindowRateLimiter
from isapay.security.signatures import hmac_sha256_hex

CARD_SECRET = "card-secret"
MPESA_SECRET = "mpesa-secret"
AIRTEL_SECRET = "airtel-secret"

Responder = Callable[[httpx.Request], httpx.Response]


def json_response(status_code: int, body: Any, headers: Optional[dict] = None) -> Responder:
    return lambda request: httpx.Response(status_code, json=body, headers=headers)


def sign(secret: str, payload: dict) -> tuple[bytes, str]:
    """Serialize a webhook payload and return (body, signature)."""
    body = json.dumps(payload).encode("utf-8")
    return body, hmac_sha256_hex(secret, body)


class ProviderStub:
    """
    httpx.MockTransport handler standing in for every external provider.

    Routes are keyed by (method, path). A route is a responder or a list of
    responders consumed in order (the last one repeats).
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Any] = {}

    def add(self, method: str, path: str, responder: Any) -> None:
        self.routes[(method, path)] = responder

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": f"no stub for {request.method} {request.url.path}"})
        if isinstance(route, list):
            responder = route.pop(0) if len(route) > 1 else route[0]
            return responder(request)
        return route(request)


def _base_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = dict(
        database_url="sqlite+aiosqlite:///:memory:",
        provider_max_retries=1,
        provider_retry_base_delay=0,
        card_webhook_secret=CARD_SECRET,
        mpesa_webhook_secret=MPESA_SECRET,
        airtel_webhook_secret=AIRTEL_SECRET,
        paypal_client_id="pp-client",
        paypal_client_secret="pp-secret",
        paypal_webhook_id="WH-123",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    """No Pesapal/M-Pesa/Airtel credentials: hosted and sandbox flows."""
    return _base_settings(
        pesapal_consumer_key="",
        pesapal_consumer_secret="",
        mpesa_consumer_key="",
        mpesa_consumer_secret="",
        airtel_client_id="",
        airtel_client_secret="",
    )


@pytest.fixture
def live_settings() -> Settings:
    """Every provider configured with credentials."""
    return _base_settings(
        pesapal_consumer_key="pk",
        pesapal_consumer_secret="ps",
        pesapal_ipn_id="ipn-1",
        mpesa_consumer_key="mk",
        mpesa_consumer_secret="ms",
        mpesa_shortcode="174379",
        mpesa_passkey="passkey",
        mpesa_callback_url="https://example.com/mpesa",
        airtel_client_id="ak",
        airtel_client_secret="as",
    )


@pytest.fixture
def provider_stub() -> ProviderStub:
    stub = ProviderStub()
    stub.add("POST", "/v1/oauth2/token", json_response(200, {"access_token": "pp-token"}))
    stub.add("POST", "/v2/checkout/orders", json_response(201, {
        "id": "PAYPAL-ORDER-1",
        "status": "CREATED",
        "links": [
            {"rel": "self", "href": "https://api.paypal.test/v2/checkout/orders/PAYPAL-ORDER-1"},
            {"rel": "approve", "href": "https://www.paypal.test/checkoutnow?token=PAYPAL-ORDER-1"},
        ],
    }))
    stub.add("POST", "/v1/notifications/verify-webhook-signature",
             json_response(200, {"verification_status": "SUCCESS"}))
    stub.add("POST", "/v3/api/Auth/RequestToken", json_response(200, {"token": "pesapal-token"}))
    stub.add("POST", "/v3/api/Transactions/SubmitOrderRequest", json_response(200, {
        "order_tracking_id": "TRACK-1",
        "redirect_url": "https://pay.pesapal.test/iframe?OrderTrackingId=TRACK-1",
        "status": "200",
    }))
    stub.add("GET", "/oauth/v1/generate", json_response(200, {"access_token": "mpesa-token"}))
    stub.add("POST", "/mpesa/stkpush/v1/processrequest", json_response(200, {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": "ws_CO_191220191020363925",
        "ResponseCode": "0",
        "ResponseDescription": "Success. Request accepted for processing",
        "CustomerMessage": "Success. Request accepted for processing",
    }))
    stub.add("POST", "/auth/oauth2/token", json_response(200, {"access_token": "airtel-token"}))
    stub.add("POST", "/merchant/v1/payments/", json_response(200, {
        "data": {"transaction": {"id": "AIRTEL-REF-1", "status": "SUCCESS"}},
        "status": {"code": "200", "message": "SUCCESS", "response_code": "DP00800001006", "success": True},
    }))
    return stub


@pytest_asyncio.fixture
async def http_client(provider_stub: ProviderStub):
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider_stub)) as client:
        yield client


@pytest.fixture
def gateway(settings: Settings, http_client: httpx.AsyncClient) -> PaymentGateway:
    return PaymentGateway(build_adapters(settings, client=http_client))


@pytest.fixture
def live_gateway(live_settings: Settings, http_client: httpx.AsyncClient) -> PaymentGateway:
    return PaymentGateway(build_adapters(live_settings, client=http_client))


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database shared by every session of one test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def rate_limiter() -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(limit=30, window=60.0)


@pytest_asyncio.fixture
async def api(session_factory, gateway, rate_limiter):
    """HTTP client against the FastAPI app, wired to the test database and stubs."""
    from isapay.database import get_session
    from isapay.main import app

    async def _session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.state.gateway = gateway
    app.state.rate_limiter = rate_limiter

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
