"""In-memory payment processor for local runs and simulations."""

from __future__ import annotations

import secrets
import time
from typing import Any

from billing.errors import PaymentNotFetched
from .base import CheckoutPreference


class MockPaymentProcessor:
    provider_name = "mock"

    def __init__(self, *, base_url: str = "https://mock.checkout.local") -> None:
        self.base_url = base_url.rstrip("/")
        self.preferences: list[dict[str, Any]] = []
        self.payments: dict[str, dict[str, Any]] = {}
        self.merchant_orders: dict[str, dict[str, Any]] = {}

    def add_payment(self, payment: dict[str, Any]) -> None:
        self.payments[str(payment["id"])] = dict(payment)

    def add_merchant_order(self, order: dict[str, Any]) -> None:
        self.merchant_orders[str(order["id"])] = dict(order)

    async def create_preference(self, payload: dict[str, Any]) -> CheckoutPreference:
        preference_id = f"mock_{int(time.time())}_{secrets.token_hex(4)}"
        self.preferences.append(dict(payload))
        return CheckoutPreference(
            provider=self.provider_name,
            preference_id=preference_id,
            external_reference=str(payload.get("external_reference") or ""),
            init_point=f"{self.base_url}/checkout?pref_id={preference_id}",
            sandbox_init_point=f"{self.base_url}/sandbox/checkout?pref_id={preference_id}",
            raw={"id": preference_id},
        )

    async def fetch_payment(self, payment_id: str) -> dict[str, Any]:
        payment = self.payments.get(str(payment_id))
        if payment is None:
            raise PaymentNotFetched("payment not found", resource_id=str(payment_id), status=404)
        return dict(payment)

    async def fetch_merchant_order(self, order_id: str) -> dict[str, Any]:
        order = self.merchant_orders.get(str(order_id))
        if order is None:
            raise PaymentNotFetched("merchant order not found", resource_id=str(order_id), status=404)
        return dict(order)
