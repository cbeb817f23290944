from isapay.models.enums import METHOD_TO_PROVIDER, PaymentMethod, Provider, TransactionStatus
from isapay.models.transaction import AuditLog, Base, Transaction

__all__ = [
    "Base",
    "Transaction",
    "AuditLog",
    "TransactionStatus",
    "Provider",
    "PaymentMethod",
    "METHOD_TO_PROVIDER",
]
