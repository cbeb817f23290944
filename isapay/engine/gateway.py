"""
Payment gateway service - the core of ISA Pay.

Runs the three operations behind the HTTP surface:

  1. initiate: method -> provider adapter -> ledger insert
  2. status:   pure ledger read
  3. webhook:  provider header -> adapter verify -> idempotent ledger update

Every failure is returned as a typed outcome (``OutcomeKind``) rather than
raised; the API layer is the only place that turns outcomes into HTTP
status codes.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from isapay.engine.ledger import (
    ApplyResult,
    LedgerError,
    apply_confirmation,
    find_by_reference,
    get_transaction,
    record_transaction,
)
from isapay.engine.retry import ProviderError
from isapay.models.enums import METHOD_TO_PROVIDER, PaymentMethod, Provider, TransactionStatus, provider_from_header
from isapay.models.transaction import Transaction, new_transaction_id
from isapay.providers.base import (
    InitiateRequest,
    InvalidRequestError,
    ProviderAdapter,
    ProviderResult,
    WebhookRequest,
)

logger = logging.getLogger("isapay.gateway")

PROVIDER_HEADER = "x-isa-provider"


class OutcomeKind(str, Enum):
    OK = "ok"
    INVALID_REQUEST = "invalid_request"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    PROVIDER_ERROR = "provider_error"
    SERVER_ERROR = "server_error"


@dataclass
class InitiateOutcome:
    kind: OutcomeKind
    result: Optional[ProviderResult] = None
    error: Optional[str] = None


@dataclass
class StatusOutcome:
    kind: OutcomeKind
    transaction: Optional[Transaction] = None
    error: Optional[str] = None


@dataclass
class WebhookOutcome:
    kind: OutcomeKind
    transaction_id: Optional[str] = None
    applied: Optional[ApplyResult] = None
    error: Optional[str] = None


class PaymentGateway:
    """Dispatches the payment operations to the matching provider adapter."""

    def __init__(self, adapters: Mapping[Provider, ProviderAdapter]):
        missing = set(Provider) - set(adapters)
        if missing:
            raise ValueError(f"No adapter configured for: {', '.join(sorted(p.value for p in missing))}")
        self.adapters = dict(adapters)

    async def aclose(self) -> None:
        for adapter in self.adapters.values():
            await adapter.aclose()

    async def initiate(
        self,
        session: AsyncSession,
        method: PaymentMethod,
        user_id: str,
        amount: float,
        currency: str,
        order_id: Optional[str] = None,
        description: Optional[str] = None,
        phone_number: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> InitiateOutcome:
        """
        Start a payment attempt and record it in the ledger.

        A provider failure is still recorded, as ``failed`` with the error in
        its metadata, so the caller gets a transaction id and a definitive
        status either way.
        """
        provider = METHOD_TO_PROVIDER[method]
        adapter = self.adapters[provider]
        request = InitiateRequest(
            transaction_id=new_transaction_id(),
            user_id=user_id,
            amount=amount,
            currency=currency,
            order_id=order_id,
            description=description,
            phone_number=phone_number,
            callback_url=callback_url,
        )
        try:
            adapter.validate_request(request)
        except InvalidRequestError as e:
            return InitiateOutcome(kind=OutcomeKind.INVALID_REQUEST, error=str(e))

        kind = OutcomeKind.OK
        error = None
        action = "transaction_initiated"
        try:
            result = await adapter.initiate(request)
        except ProviderError as e:
            logger.error("Initiate via %s failed for %s: %s", provider.value, request.transaction_id, e)
            kind, error, action = OutcomeKind.PROVIDER_ERROR, str(e), "transaction_initiate_failed"
            result = self._failed_result(request, provider, {"error": str(e), "status_code": e.status_code})
        except Exception as e:
            logger.exception("Unexpected error initiating via %s for %s", provider.value, request.transaction_id)
            kind, error, action = OutcomeKind.PROVIDER_ERROR, str(e), "transaction_initiate_failed"
            result = self._failed_result(request, provider, {"error": f"Unexpected error: {e}"})

        try:
            await record_transaction(session, request, result, action=action)
        except LedgerError as e:
            # The provider may already hold a live order for this attempt.
            logger.error(
                "RECONCILE | transaction=%s provider=%s reference=%s status=%s amount=%s %s | %s",
                result.transaction_id,
                provider.value,
                result.reference_id or "-",
                result.status.value,
                result.amount,
                result.currency,
                e,
            )
            return InitiateOutcome(kind=OutcomeKind.SERVER_ERROR, error="Failed to record transaction")

        logger.info(
            "Transaction %s initiated via %s: %s",
            result.transaction_id,
            provider.value,
            result.status.value,
        )
        return InitiateOutcome(kind=kind, result=result, error=error)

    async def status(self, session: AsyncSession, transaction_id: str) -> StatusOutcome:
        try:
            tx = await get_transaction(session, transaction_id)
        except LedgerError as e:
            logger.error("Status lookup failed for %s: %s", transaction_id, e)
            return StatusOutcome(kind=OutcomeKind.SERVER_ERROR, error="Lookup failed")
        if tx is None:
            return StatusOutcome(kind=OutcomeKind.NOT_FOUND, error="Not found")
        return StatusOutcome(kind=OutcomeKind.OK, transaction=tx)

    async def webhook(
        self,
        session: AsyncSession,
        headers: Mapping[str, str],
        body: bytes,
    ) -> WebhookOutcome:
        """Verify a provider callback and apply it to the ledger."""
        webhook = WebhookRequest.from_raw(headers, body)
        provider = provider_from_header(webhook.headers.get(PROVIDER_HEADER))
        if provider is None:
            return WebhookOutcome(kind=OutcomeKind.INVALID_REQUEST, error="Unknown or missing provider header")

        try:
            confirmation = await self.adapters[provider].verify(webhook)
        except ValueError:
            return WebhookOutcome(kind=OutcomeKind.INVALID_REQUEST, error="Invalid webhook body")
        except ProviderError as e:
            logger.error("%s webhook verification unavailable: %s", provider.value, e)
            return WebhookOutcome(kind=OutcomeKind.PROVIDER_ERROR, error="Verification unavailable")

        if confirmation is None:
            return WebhookOutcome(kind=OutcomeKind.UNAUTHORIZED, error="Invalid signature")

        try:
            transaction_id = confirmation.transaction_id
            if not transaction_id and confirmation.reference_id:
                tx = await find_by_reference(session, provider, confirmation.reference_id)
                transaction_id = tx.id if tx else None
            if not transaction_id:
                return WebhookOutcome(kind=OutcomeKind.INVALID_REQUEST, error="Missing transaction id")

            applied = await apply_confirmation(session, transaction_id, provider, confirmation)
        except LedgerError as e:
            logger.error(
                "RECONCILE | %s webhook status=%s reference=%s could not be applied: %s",
                provider.value,
                confirmation.status.value,
                confirmation.reference_id or "-",
                e,
            )
            return WebhookOutcome(kind=OutcomeKind.SERVER_ERROR, error="Update failed")

        if applied is ApplyResult.NOT_FOUND:
            return WebhookOutcome(kind=OutcomeKind.NOT_FOUND, transaction_id=transaction_id, error="Not found")
        if applied is ApplyResult.PROVIDER_MISMATCH:
            return WebhookOutcome(
                kind=OutcomeKind.INVALID_REQUEST,
                transaction_id=transaction_id,
                error="Transaction belongs to another provider",
            )

        logger.info(
            "%s webhook for %s: %s (%s)",
            provider.value,
            transaction_id,
            confirmation.status.value,
            applied.value,
        )
        return WebhookOutcome(kind=OutcomeKind.OK, transaction_id=transaction_id, applied=applied)

    @staticmethod
    def _failed_result(request: InitiateRequest, provider: Provider, metadata: dict) -> ProviderResult:
        return ProviderResult(
            transaction_id=request.transaction_id,
            provider=provider,
            status=TransactionStatus.FAILED,
            amount=request.amount,
            currency=request.currency,
            metadata=metadata,
        )
