"""Payment processor integrations for plan billing."""

from .base import CheckoutPreference, PaymentProcessor
from .mercadopago import MercadoPagoClient
from .mock import MockPaymentProcessor

__all__ = [
    "CheckoutPreference",
    "PaymentProcessor",
    "MercadoPagoClient",
    "MockPaymentProcessor",
    "build_payment_processor",
]


def build_payment_processor(config) -> PaymentProcessor:
    """Pick processor implementation from config."""
    if config.payment_processor == MockPaymentProcessor.provider_name:
        return MockPaymentProcessor(base_url=config.public_base_url)
    return MercadoPagoClient(
        access_token=config.mp_access_token,
        base_url=config.mp_api_base_url,
        timeout_sec=config.mp_http_timeout_sec,
    )
