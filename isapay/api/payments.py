"""
ISA Pay endpoints.

POST /initiate                  - Start a payment attempt with one of four providers.
GET  /status/{transaction_id}   - Read a transaction's current status (safe to poll).
POST /webhook                   - Provider callback; routed by the X-Isa-Provider header.

Paths are relative to ``settings.mount_path``. This module is the single
place where gateway outcomes become HTTP status codes.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from isapay.database import get_session
from isapay.engine.gateway import OutcomeKind, PaymentGateway
from isapay.models.enums import PaymentMethod
from isapay.models.transaction import Transaction
from isapay.security.rate_limit import FixedWindowRateLimiter

router = APIRouter(tags=["payments"])

OUTCOME_STATUS_CODES = {
    OutcomeKind.OK: 200,
    OutcomeKind.INVALID_REQUEST: 400,
    OutcomeKind.UNAUTHORIZED: 401,
    OutcomeKind.NOT_FOUND: 404,
    OutcomeKind.PROVIDER_ERROR: 502,
    OutcomeKind.SERVER_ERROR: 500,
}


class InitiateBody(BaseModel):
    user_id: str = Field(min_length=1)
    amount: float = Field(gt=0, allow_inf_nan=False)
    currency: str = Field(min_length=1)
    method: PaymentMethod
    order_id: Optional[str] = None
    description: Optional[str] = None
    phone_number: Optional[str] = None
    callback_url: Optional[str] = None

    model_config = {"str_strip_whitespace": True}


class InitiateResponse(BaseModel):
    transaction_id: str
    provider: str
    status: str
    amount: float
    currency: str
    redirect_url: Optional[str] = None
    reference_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class StatusResponse(BaseModel):
    transaction_id: str
    provider: str
    status: str
    amount: float
    currency: str
    redirect_url: Optional[str] = None


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
    return request.app.state.rate_limiter


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _status_to_response(tx: Transaction) -> StatusResponse:
    return StatusResponse(
        transaction_id=tx.id,
        provider=tx.provider,
        status=tx.status,
        amount=tx.amount,
        currency=tx.currency,
        redirect_url=tx.redirect_url,
    )


@router.post("/initiate", response_model=InitiateResponse, response_model_exclude_none=True)
async def initiate(
    request: Request,
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
):
    """
    Start a payment attempt.

    Rate limiting runs before the body is even parsed, so a throttled caller
    costs nothing downstream. A provider failure returns 502 together with
    the recorded ``failed`` transaction.
    """
    decision = limiter.hit(client_ip(request))
    if not decision.allowed:
        return JSONResponse(
            status_code=429,
            content={"error": "Too Many Requests"},
            headers={"Retry-After": decision.retry_after_header},
        )

    try:
        body = InitiateBody.model_validate(await request.json())
    except ValidationError as e:
        detail = e.errors(include_url=False, include_context=False, include_input=False)
        return _error(400, "Invalid request", detail=detail)
    except ValueError:
        return _error(400, "Invalid request", detail="Body must be valid JSON")

    outcome = await gateway.initiate(
        session,
        method=body.method,
        user_id=body.user_id,
        amount=body.amount,
        currency=body.currency,
        order_id=body.order_id,
        description=body.description,
        phone_number=body.phone_number,
        callback_url=body.callback_url,
    )

    if outcome.result is None:
        return _error(OUTCOME_STATUS_CODES[outcome.kind], outcome.error or "Initiate failed")

    result = outcome.result
    payload = InitiateResponse(
        transaction_id=result.transaction_id,
        provider=result.provider.value,
        status=result.status.value,
        amount=result.amount,
        currency=result.currency,
        redirect_url=result.redirect_url,
        reference_id=result.reference_id,
        metadata=result.metadata,
    )
    if outcome.kind is not OutcomeKind.OK:
        content = payload.model_dump(mode="json", exclude_none=True)
        content["error"] = outcome.error
        return JSONResponse(status_code=OUTCOME_STATUS_CODES[outcome.kind], content=content)
    return payload


@router.get("/status/{transaction_id}", response_model=StatusResponse, response_model_exclude_none=True)
async def get_status(
    transaction_id: str,
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Current status of a transaction, straight from the ledger."""
    outcome = await gateway.status(session, transaction_id)
    if outcome.transaction is None:
        return _error(OUTCOME_STATUS_CODES[outcome.kind], outcome.error or "Lookup failed")
    return _status_to_response(outcome.transaction)


@router.post("/webhook")
async def webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Provider callback. Verified before any ledger mutation."""
    outcome = await gateway.webhook(session, dict(request.headers), await request.body())
    if outcome.kind is not OutcomeKind.OK:
        return _error(OUTCOME_STATUS_CODES[outcome.kind], outcome.error or "Webhook rejected")
    return {"ok": True}
