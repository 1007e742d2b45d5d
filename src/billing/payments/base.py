"""Base contracts for payment processors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class CheckoutPreference:
    """Normalized preference returned by the processor."""

    provider: str
    preference_id: str | None
    external_reference: str
    init_point: str | None = None
    sandbox_init_point: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def redirect_url(self) -> str | None:
        # Production checkout wins when both URLs are present.
        return self.init_point or self.sandbox_init_point


class PaymentProcessor(Protocol):
    """Processor interface used by preference issuing and notification handling."""

    provider_name: str

    async def create_preference(self, payload: dict[str, Any]) -> CheckoutPreference:
        """Register a checkout preference and return its redirect data."""

    async def fetch_payment(self, payment_id: str) -> dict[str, Any]:
        """Read a payment resource; raise PaymentNotFetched on any failure."""

    async def fetch_merchant_order(self, order_id: str) -> dict[str, Any]:
        """Read a merchant order resource; raise PaymentNotFetched on any failure."""
