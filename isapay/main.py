"""
ISA Pay - Payment Gateway Aggregation API.

Unifies card/bank (Pesapal), M-Pesa, Airtel Money and PayPal behind one
transaction model. Payments are initiated synchronously, confirmed by
verified provider webhooks, and observable through a cheap status endpoint
that clients poll.

Start the server:
    uvicorn isapay.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from isapay.api.health import router as health_router
from isapay.api.payments import router as payments_router
from isapay.config import settings
from isapay.database import init_db
from isapay.engine.gateway import PaymentGateway
from isapay.providers.registry import build_adapters
from isapay.security.rate_limit import FixedWindowRateLimiter

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database and provider adapters on startup."""
    await init_db()
    app.state.gateway = PaymentGateway(build_adapters(settings))
    app.state.rate_limiter = FixedWindowRateLimiter(
        limit=settings.rate_limit_requests,
        window=settings.rate_limit_window_seconds,
    )
    yield
    await app.state.gateway.aclose()


app = FastAPI(
    title="ISA Pay",
    description=(
        "Payment gateway aggregation layer: one transaction model across card/bank, "
        "mobile-money and PayPal providers, with verified webhooks, idempotent "
        "confirmation and rate-limited initiation."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(payments_router, prefix=settings.mount_path)
