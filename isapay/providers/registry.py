"""Closed mapping from provider to adapter implementation."""

from typing import Optional

import httpx

from isapay.config import Settings
from isapay.models.enums import Provider
from isapay.providers.airtel import AirtelAdapter
from isapay.providers.base import ProviderAdapter
from isapay.providers.card_bank import CardBankAdapter
from isapay.providers.mpesa import MpesaAdapter
from isapay.providers.paypal import PaypalAdapter

ADAPTER_CLASSES: dict[Provider, type[ProviderAdapter]] = {
    Provider.CARD_BANK: CardBankAdapter,
    Provider.MPESA: MpesaAdapter,
    Provider.AIRTEL: AirtelAdapter,
    Provider.PAYPAL: PaypalAdapter,
}


def build_adapters(
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> dict[Provider, ProviderAdapter]:
    """Instantiate one adapter per provider, optionally sharing an HTTP client."""
    return {provider: cls(settings, client=client) for provider, cls in ADAPTER_CLASSES.items()}
