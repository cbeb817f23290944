"""Enumerations for the payment gateway domain model."""

from enum import Enum
from typing import Optional


class TransactionStatus(str, Enum):
    """Lifecycle states for a payment attempt. SUCCESS and FAILED are terminal."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class Provider(str, Enum):
    """External payment rails behind the gateway."""

    CARD_BANK = "Pesapal"
    MPESA = "M-Pesa"
    AIRTEL = "Airtel"
    PAYPAL = "PayPal"


class PaymentMethod(str, Enum):
    """Payment method a client picks when initiating."""

    CARD_BANK = "card_bank"
    MPESA = "mpesa"
    AIRTEL = "airtel"
    PAYPAL = "paypal"


METHOD_TO_PROVIDER: dict[PaymentMethod, Provider] = {
    PaymentMethod.CARD_BANK: Provider.CARD_BANK,
    PaymentMethod.MPESA: Provider.MPESA,
    PaymentMethod.AIRTEL: Provider.AIRTEL,
    PaymentMethod.PAYPAL: Provider.PAYPAL,
}


def provider_from_header(value: Optional[str]) -> Optional[Provider]:
    """
    Resolve the webhook routing header to a provider.

    Accepts either the provider name ("M-Pesa") or the method alias
    ("mpesa"), case-insensitively. Returns None for anything else.
    """
    token = (value or "").strip().lower()
    if not token:
        return None
    for provider in Provider:
        if provider.value.lower() == token:
            return provider
    for method, provider in METHOD_TO_PROVIDER.items():
        if method.value == token:
            return provider
    return None
