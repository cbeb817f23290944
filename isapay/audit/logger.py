"""
Immutable audit trail for payment operations.

Every ledger mutation gets an append-only audit log entry with:
  - Transaction ID (which payment attempt)
  - Action (what happened)
  - Details (provider, status, reference, error context)
  - Timestamp (UTC)

Entries are added to the caller's session and committed together with the
change they describe. They are never modified or deleted.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from isapay.models.transaction import AuditLog

logger = logging.getLogger("isapay.audit")


def log_event(
    session: AsyncSession,
    action: str,
    transaction_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """
    Create an immutable audit log entry.

    Args:
        session: Database session.
        action: What happened (e.g. "transaction_initiated", "webhook_applied").
        transaction_id: The payment attempt this event relates to.
        details: Arbitrary context (serialized to JSON).

    Returns:
        The created AuditLog record.
    """
    entry = AuditLog(
        transaction_id=transaction_id,
        action=action,
        details=json.dumps(details, default=str) if details else None,
        timestamp=datetime.now(timezone.utc),
    )
    session.add(entry)
    logger.info(
        "AUDIT | transaction=%s action=%s | %s",
        transaction_id or "-",
        action,
        json.dumps(details, default=str)[:200] if details else "",
    )
    return entry
