"""Inbound notification classification and normalization.

Mercado Pago has delivered payment notifications in several shapes over time:

  * webhooks:  {"type": "payment", "action": "payment.updated", "data": {"id": "123"}}
  * IPN:       POST /webhook_mp?topic=payment&id=123 (empty body)
  * resource:  {"topic": "merchant_order", "resource": "https://api.mercadopago.com/merchant_orders/456"}
  * inline:    {"data": {"status": "approved", "metadata": {"email": ...}}} (simulations)

`classify_notification` maps any of them onto one closed set of variants and
`EventNormalizer` turns a variant into a single `PaymentOutcome`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Union

from billing.models import APPROVED_STATUS, PaymentOutcome
from billing.payments import PaymentProcessor


logger = logging.getLogger(__name__)

PAYMENT_RESOURCE_RE = re.compile(r"/v1/payments/(\d+)")
MERCHANT_ORDER_RESOURCE_RE = re.compile(r"merchant_orders/(\d+)")
TRAILING_ID_RE = re.compile(r"(?:^|/)(\d+)/?$")

VIA_INLINE = "inline_metadata"
VIA_SIMULATION = "sim_approved"
VIA_PAYMENT = "payment_lookup"
VIA_ORDER = "merchant_order_lookup"
VIA_UNRECOGNIZED = "unrecognized"

STATUS_NO_PAYMENTS = "no_payments"
STATUS_UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class InlineMetadata:
    data: Mapping[str, Any]
    via: str = VIA_INLINE


@dataclass(frozen=True)
class OrderReference:
    order_id: str
    external_reference: str | None = None


@dataclass(frozen=True)
class PaymentReference:
    payment_id: str
    external_reference: str | None = None


@dataclass(frozen=True)
class Unrecognized:
    reason: str
    type: str = ""
    action: str = ""


Notification = Union[InlineMetadata, OrderReference, PaymentReference, Unrecognized]


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _first_text(*values: Any) -> str | None:
    for value in values:
        if value is None or isinstance(value, (dict, list, bool)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def notification_topic(body: Mapping[str, Any], query: Mapping[str, Any] | None = None) -> str:
    """Best-effort topic label for the raw notification log."""
    query = query or {}
    topic = _first_text(query.get("topic"), body.get("topic"), body.get("type"))
    if topic:
        return topic.lower()
    action = str(body.get("action") or "")
    if "payment" in action:
        return "payment"
    return "unknown"


def classify_notification(
    body: Mapping[str, Any],
    query: Mapping[str, Any] | None = None,
    *,
    allow_simulation: bool = False,
) -> Notification:
    """Map raw body/query onto exactly one notification variant (precedence order)."""
    query = query or {}
    body = _as_mapping(body)
    data = _as_mapping(body.get("data"))
    metadata = _as_mapping(data.get("metadata"))

    # 1) Everything already resolved in the body.
    if data.get("status") and metadata.get("email"):
        return InlineMetadata(data=data)

    type_ = str(body.get("type") or "").strip().lower()
    action = str(body.get("action") or "").strip().lower()
    topic = str(query.get("topic") or body.get("topic") or "").strip().lower()

    if allow_simulation and type_ == "test_approved":
        body_metadata = _as_mapping(body.get("metadata"))
        email = _first_text(data.get("email"), body_metadata.get("email"))
        if email:
            return InlineMetadata(
                data={
                    "id": _first_text(data.get("id"), body.get("id")),
                    "status": APPROVED_STATUS,
                    "external_reference": _first_text(
                        data.get("external_reference"), body.get("external_reference")
                    ),
                    "metadata": {
                        **dict(body_metadata),
                        "email": email,
                        "plan": _first_text(data.get("plan"), body_metadata.get("plan")),
                    },
                },
                via=VIA_SIMULATION,
            )
        return Unrecognized(reason="simulation_without_email", type=type_, action=action)

    resource = _first_text(body.get("resource"), data.get("resource"), query.get("resource")) or ""
    external_reference = _first_text(data.get("external_reference"), body.get("external_reference"))

    # 2) Merchant order pointer.
    order_match = MERCHANT_ORDER_RESOURCE_RE.search(resource)
    looks_like_order = (
        topic == "merchant_order"
        or "merchant_order" in type_
        or "merchant_order" in action
        or order_match is not None
        or bool(data.get("merchant_order_id"))
    )
    if looks_like_order:
        order_id = _first_text(
            data.get("merchant_order_id"),
            order_match.group(1) if order_match else None,
            query.get("id"),
            data.get("id"),
            body.get("id"),
        )
        if order_id:
            return OrderReference(order_id=order_id, external_reference=external_reference)
        return Unrecognized(reason="merchant_order_id_missing", type=type_, action=action)

    # 3) Payment pointer.
    payment_match = PAYMENT_RESOURCE_RE.search(resource)
    trailing_match = TRAILING_ID_RE.search(resource) if resource else None
    looks_like_payment = (
        "payment" in topic
        or "payment" in type_
        or "payment" in action
        or payment_match is not None
        or trailing_match is not None
    )
    if looks_like_payment:
        payment_id = _first_text(
            data.get("id"),
            data.get("payment_id"),
            body.get("id"),
            query.get("id"),
            query.get("data.id"),
            payment_match.group(1) if payment_match else None,
            trailing_match.group(1) if trailing_match else None,
        )
        if payment_id:
            return PaymentReference(payment_id=payment_id, external_reference=external_reference)
        return Unrecognized(reason="missing_payment_id", type=type_, action=action)

    return Unrecognized(reason="unsupported_event", type=type_, action=action)


def _pick_order_payment(order: Mapping[str, Any]) -> Mapping[str, Any] | None:
    """Approved payment of the order if any, else the first one that has an id."""
    payments = [p for p in order.get("payments") or [] if isinstance(p, Mapping) and p.get("id")]
    for payment in payments:
        if str(payment.get("status") or "").strip().lower() == APPROVED_STATUS:
            return payment
    return payments[0] if payments else None


def outcome_from_payment(
    payment: Mapping[str, Any],
    *,
    via: str,
    external_reference_hint: str | None = None,
) -> PaymentOutcome:
    order = _as_mapping(payment.get("order"))
    payer = _as_mapping(payment.get("payer"))
    amount = payment.get("transaction_amount")
    return PaymentOutcome(
        payment_id=_first_text(payment.get("id")),
        status=str(payment.get("status") or "").strip().lower(),
        via=via,
        correlation_token=_first_text(payment.get("external_reference"), external_reference_hint),
        payer_email=_first_text(payer.get("email")),
        metadata=dict(_as_mapping(payment.get("metadata"))),
        status_detail=_first_text(payment.get("status_detail")),
        amount=float(amount) if isinstance(amount, (int, float)) and not isinstance(amount, bool) else None,
        currency=_first_text(payment.get("currency_id")),
        order_id=_first_text(order.get("id"), payment.get("order_id")),
        date_created=_first_text(payment.get("date_created")),
        date_approved=_first_text(payment.get("date_approved")),
        date_last_updated=_first_text(payment.get("date_last_updated")),
        raw=dict(payment),
    )


class EventNormalizer:
    """Turn a classified notification into one PaymentOutcome.

    Raises PaymentNotFetched when a pointer cannot be dereferenced.
    """

    def __init__(self, processor: PaymentProcessor) -> None:
        self.processor = processor

    async def normalize(self, notification: Notification) -> PaymentOutcome:
        if isinstance(notification, InlineMetadata):
            return self._from_inline(notification)
        if isinstance(notification, OrderReference):
            return await self._from_order(notification)
        if isinstance(notification, PaymentReference):
            return await self._from_payment(notification)
        if isinstance(notification, Unrecognized):
            return PaymentOutcome(payment_id=None, status=STATUS_UNRECOGNIZED, via=VIA_UNRECOGNIZED)
        raise TypeError(f"Unsupported notification variant: {type(notification).__name__}")

    def _from_inline(self, notification: InlineMetadata) -> PaymentOutcome:
        data = notification.data
        metadata = dict(_as_mapping(data.get("metadata")))
        return PaymentOutcome(
            payment_id=_first_text(data.get("id")),
            status=str(data.get("status") or "").strip().lower(),
            via=notification.via,
            correlation_token=_first_text(data.get("external_reference"), metadata.get("external_reference")),
            email=_first_text(metadata.get("email")),
            payer_email=_first_text(_as_mapping(data.get("payer")).get("email")),
            metadata=metadata,
            date_created=_first_text(data.get("date_created")),
            date_approved=_first_text(data.get("date_approved")),
            raw=dict(data),
        )

    async def _from_payment(self, notification: PaymentReference, *, via: str = VIA_PAYMENT) -> PaymentOutcome:
        payment = await self.processor.fetch_payment(notification.payment_id)
        return outcome_from_payment(
            payment,
            via=via,
            external_reference_hint=notification.external_reference,
        )

    async def _from_order(self, notification: OrderReference) -> PaymentOutcome:
        order = await self.processor.fetch_merchant_order(notification.order_id)
        chosen = _pick_order_payment(order)
        if chosen is None:
            logger.info("merchant_order %s has no payments yet", notification.order_id)
            return PaymentOutcome(
                payment_id=None,
                status=STATUS_NO_PAYMENTS,
                via=VIA_ORDER,
                correlation_token=_first_text(order.get("external_reference"), notification.external_reference),
                order_id=notification.order_id,
            )
        return await self._from_payment(
            PaymentReference(
                payment_id=str(chosen["id"]),
                external_reference=_first_text(order.get("external_reference"), notification.external_reference),
            ),
            via=VIA_ORDER,
        )
