"""Application configuration via environment variables."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./isapay.db"
    log_level: str = "INFO"
    mount_path: str = "/isa-pay"

    # Initiate endpoint throttle (per client IP)
    rate_limit_requests: int = 30
    rate_limit_window_seconds: float = 60.0

    # Reject webhooks for HMAC providers that have no secret configured
    webhook_require_signature: bool = True

    provider_timeout_seconds: float = 15.0
    provider_max_retries: int = 2
    provider_retry_base_delay: float = 0.5

    # Card/Bank (Pesapal)
    pesapal_base_url: str = "https://pay.pesapal.com/v3/api"
    pesapal_consumer_key: str = ""
    pesapal_consumer_secret: str = ""
    pesapal_callback_url: str = ""
    pesapal_ipn_id: str = ""
    card_checkout_url: str = "https://pay.pesapal.com/iframe/checkout"
    card_webhook_secret: Optional[str] = None

    # Mobile-Money-A (M-Pesa Daraja)
    mpesa_base_url: str = "https://sandbox.safaricom.co.ke"
    mpesa_consumer_key: str = ""
    mpesa_consumer_secret: str = ""
    mpesa_shortcode: str = ""
    mpesa_passkey: str = ""
    mpesa_callback_url: str = ""
    mpesa_webhook_secret: Optional[str] = None

    # Mobile-Money-B (Airtel Money)
    airtel_base_url: str = "https://openapi.airtel.africa"
    airtel_client_id: str = ""
    airtel_client_secret: str = ""
    airtel_country: str = "KE"
    airtel_webhook_secret: Optional[str] = None

    # PayPal
    paypal_base_url: str = "https://api-m.sandbox.paypal.com"
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_webhook_id: str = ""
    paypal_return_url: str = "https://example.com/paypal/return"
    paypal_cancel_url: str = "https://example.com/paypal/cancel"
    paypal_brand_name: str = "ISA Pay"

    # Client-side status polling
    poll_interval_seconds: float = 4.0
    poll_timeout_seconds: float = 180.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
