"""
Transaction ledger.

Durable record of every payment attempt. Rows are inserted once at
initiate time and updated by verified webhooks through a single
conditional UPDATE, so concurrent deliveries for the same transaction
serialize in the database and terminal rows are never touched again.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from isapay.audit.logger import log_event
from isapay.models.enums import Provider, TransactionStatus
from isapay.models.transaction import Transaction
from isapay.providers.base import Confirmation, InitiateRequest, ProviderResult

logger = logging.getLogger("isapay.ledger")


class LedgerError(Exception):
    """Persistence failure in the transaction ledger."""


class ApplyResult(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"  # already terminal, webhook ignored
    NOT_FOUND = "not_found"
    PROVIDER_MISMATCH = "provider_mismatch"


async def record_transaction(
    session: AsyncSession,
    request: InitiateRequest,
    result: ProviderResult,
    action: str = "transaction_initiated",
) -> Transaction:
    """Insert a new ledger row for an initiate call, with its audit entry."""
    tx = Transaction(
        id=result.transaction_id,
        user_id=request.user_id,
        amount=result.amount,
        currency=result.currency,
        provider=result.provider.value,
        status=result.status.value,
        reference_id=result.reference_id,
        redirect_url=result.redirect_url,
        metadata_json=json.dumps(result.metadata, default=str) if result.metadata else None,
        order_id=request.order_id,
        description=request.description,
    )
    try:
        session.add(tx)
        await session.flush()
        log_event(session, action, transaction_id=tx.id, details={
            "provider": tx.provider,
            "status": tx.status,
            "amount": tx.amount,
            "currency": tx.currency,
            "reference_id": tx.reference_id,
        })
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise LedgerError(f"Failed to record transaction {result.transaction_id}: {e}") from e
    return tx


async def get_transaction(session: AsyncSession, transaction_id: str) -> Optional[Transaction]:
    try:
        return await session.get(Transaction, transaction_id)
    except SQLAlchemyError as e:
        raise LedgerError(f"Failed to load transaction {transaction_id}: {e}") from e


async def find_by_reference(
    session: AsyncSession,
    provider: Provider,
    reference_id: str,
) -> Optional[Transaction]:
    """Most recent transaction carrying this provider-side reference id."""
    try:
        result = await session.execute(
            select(Transaction)
            .where(Transaction.provider == provider.value, Transaction.reference_id == reference_id)
            .order_by(Transaction.created_at.desc())
            .limit(1)
        )
    except SQLAlchemyError as e:
        raise LedgerError(f"Failed to look up reference {reference_id}: {e}") from e
    return result.scalars().first()


async def apply_confirmation(
    session: AsyncSession,
    transaction_id: str,
    provider: Provider,
    confirmation: Confirmation,
) -> ApplyResult:
    """
    Apply a verified webhook to a pending transaction.

    Only rows still ``pending`` are updated. A terminal confirmation moves the
    row to ``success``/``failed``; a pending one only records the reference
    id. Replays and retries for terminal rows are accepted and change
    nothing.
    """
    values: dict = {"updated_at": datetime.now(timezone.utc)}
    if confirmation.status.is_terminal:
        values["status"] = confirmation.status.value
    if confirmation.reference_id:
        values["reference_id"] = confirmation.reference_id

    try:
        result = await session.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction_id,
                Transaction.provider == provider.value,
                Transaction.status == TransactionStatus.PENDING.value,
            )
            .values(**values)
        )

        if result.rowcount:
            log_event(session, "webhook_applied", transaction_id=transaction_id, details={
                "provider": provider.value,
                "status": confirmation.status.value,
                "reference_id": confirmation.reference_id,
            })
            await session.commit()
            return ApplyResult.APPLIED

        current = await session.execute(
            select(Transaction.provider, Transaction.status).where(Transaction.id == transaction_id)
        )
        row = current.first()
        if row is None:
            # Read-only path, nothing to roll back.
            await session.commit()
            return ApplyResult.NOT_FOUND
        if row.provider != provider.value:
            await session.commit()
            logger.warning(
                "Webhook from %s names transaction %s owned by %s",
                provider.value,
                transaction_id,
                row.provider,
            )
            return ApplyResult.PROVIDER_MISMATCH

        log_event(session, "webhook_ignored_terminal", transaction_id=transaction_id, details={
            "provider": provider.value,
            "current_status": row.status,
            "webhook_status": confirmation.status.value,
        })
        await session.commit()
        return ApplyResult.UNCHANGED
    except SQLAlchemyError as e:
        await session.rollback()
        raise LedgerError(f"Failed to update transaction {transaction_id}: {e}") from e
