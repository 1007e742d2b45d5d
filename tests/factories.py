"""Builders for Mercado Pago resources used across tests."""

from __future__ import annotations

from typing import Any


def approved_payment(
    payment_id: str = "1001",
    *,
    status: str = "approved",
    external_reference: str | None = "owner@example.com|pro|web",
    metadata: dict[str, Any] | None = None,
    payer_email: str | None = "payer@example.com",
    date_approved: str | None = "2025-09-18T10:00:00.000-04:00",
) -> dict[str, Any]:
    """Mercado Pago payment resource as returned by GET /v1/payments/{id}."""
    return {
        "id": int(payment_id) if payment_id.isdigit() else payment_id,
        "status": status,
        "status_detail": "accredited" if status == "approved" else "pending_contingency",
        "external_reference": external_reference,
        "metadata": metadata or {},
        "payer": {"email": payer_email},
        "transaction_amount": 300,
        "currency_id": "MXN",
        "date_created": "2025-09-18T09:59:00.000-04:00",
        "date_approved": date_approved,
        "order": {"id": "555", "type": "mercadopago"},
    }


def merchant_order(order_id: str = "555", payments: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    """Mercado Pago merchant order resource (GET /merchant_orders/{id})."""
    return {
        "id": int(order_id) if order_id.isdigit() else order_id,
        "status": "opened",
        "external_reference": None,
        "payments": payments or [],
    }
