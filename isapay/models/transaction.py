"""SQLAlchemy models for the payment gateway."""

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_transaction_id() -> str:
    return str(uuid.uuid4())


class Transaction(Base):
    """
    One payment attempt, end to end.

    Created as ``pending`` by an initiate call and moved at most once more,
    to ``success`` or ``failed``, by a verified webhook. Rows are never
    deleted. The ``id`` is ours; provider identifiers live in
    ``reference_id`` and are never handed to the client as the key.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_provider_reference", "provider", "reference_id"),
    )

    id = Column(String(36), primary_key=True, default=new_transaction_id)
    user_id = Column(String(100), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(10), nullable=False)
    provider = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    reference_id = Column(String(100), nullable=True)
    redirect_url = Column(Text, nullable=True)
    metadata_json = Column("metadata", Text, nullable=True)  # diagnostics only

    order_id = Column(String(100), nullable=True)
    description = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    audit_logs = relationship("AuditLog", back_populates="transaction", lazy="raise")

    @property
    def provider_metadata(self) -> Optional[dict[str, Any]]:
        if not self.metadata_json:
            return None
        try:
            return json.loads(self.metadata_json)
        except (json.JSONDecodeError, TypeError):
            return {"raw": self.metadata_json}


class AuditLog(Base):
    """
    Immutable audit trail entry.

    Written in the same database transaction as every ledger mutation, so
    each status change can be traced to the initiate call or the verified
    webhook that caused it.
    """

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(36), ForeignKey("transactions.id"), nullable=True, index=True)
    action = Column(String(50), nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=_utcnow)

    transaction = relationship("Transaction", back_populates="audit_logs")
