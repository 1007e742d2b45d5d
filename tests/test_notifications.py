import asyncio

import pytest

from billing.errors import PaymentNotFetched
from billing.notifications import (
    STATUS_NO_PAYMENTS,
    VIA_INLINE,
    VIA_ORDER,
    VIA_PAYMENT,
    VIA_SIMULATION,
    EventNormalizer,
    InlineMetadata,
    OrderReference,
    PaymentReference,
    Unrecognized,
    classify_notification,
    notification_topic,
)
from billing.payments import MockPaymentProcessor
from factories import approved_payment, merchant_order


def test_classify_webhook_payment():
    notification = classify_notification({"type": "payment", "action": "payment.updated", "data": {"id": "123"}}, {})
    assert notification == PaymentReference(payment_id="123")


def test_classify_ipn_query_payment():
    notification = classify_notification({}, {"topic": "payment", "id": "456"})
    assert notification == PaymentReference(payment_id="456")


def test_classify_payment_resource_url():
    notification = classify_notification({"resource": "https://api.mercadopago.com/v1/payments/789"}, {})
    assert isinstance(notification, PaymentReference)
    assert notification.payment_id == "789"


def test_classify_merchant_order_resource():
    notification = classify_notification(
        {"topic": "merchant_order", "resource": "https://api.mercadolibre.com/merchant_orders/555"},
        {},
    )
    assert notification == OrderReference(order_id="555")


def test_classify_merchant_order_query_id():
    notification = classify_notification({}, {"topic": "merchant_order", "id": "556"})
    assert notification == OrderReference(order_id="556")


def test_classify_inline_metadata_wins():
    body = {
        "type": "payment",
        "data": {"id": "1", "status": "approved", "metadata": {"email": "a@b.com", "plan": "pro"}},
    }
    notification = classify_notification(body, {})
    assert isinstance(notification, InlineMetadata)
    assert notification.via == VIA_INLINE


def test_classify_simulation_only_when_allowed():
    body = {"type": "test_approved", "data": {"email": "a@b.com", "plan": "pro"}}

    allowed = classify_notification(body, {}, allow_simulation=True)
    assert isinstance(allowed, InlineMetadata)
    assert allowed.via == VIA_SIMULATION
    assert allowed.data["status"] == "approved"

    assert isinstance(classify_notification(body, {}, allow_simulation=False), Unrecognized)


@pytest.mark.parametrize(
    ("body", "query", "reason"),
    [
        ({}, {}, "unsupported_event"),
        ({"type": "plan", "data": {"id": "9"}}, {}, "unsupported_event"),
        ({"type": "payment", "data": {}}, {}, "missing_payment_id"),
        ({"topic": "merchant_order"}, {}, "merchant_order_id_missing"),
    ],
)
def test_classify_unrecognized(body, query, reason):
    notification = classify_notification(body, query)
    assert isinstance(notification, Unrecognized)
    assert notification.reason == reason


def test_notification_topic():
    assert notification_topic({"type": "payment"}, {}) == "payment"
    assert notification_topic({}, {"topic": "merchant_order"}) == "merchant_order"
    assert notification_topic({"action": "payment.created"}) == "payment"
    assert notification_topic({}) == "unknown"


def test_normalize_payment_lookup():
    processor = MockPaymentProcessor()
    processor.add_payment(approved_payment("1001"))

    outcome = asyncio.run(EventNormalizer(processor).normalize(PaymentReference(payment_id="1001")))

    assert outcome.is_approved
    assert outcome.via == VIA_PAYMENT
    assert outcome.payment_id == "1001"
    assert outcome.correlation_token == "owner@example.com|pro|web"
    assert outcome.payer_email == "payer@example.com"
    assert outcome.amount == 300.0
    assert outcome.order_id == "555"


def test_normalize_order_selects_approved_payment():
    processor = MockPaymentProcessor()
    processor.add_payment(approved_payment("2001", status="pending"))
    processor.add_payment(approved_payment("2002"))
    processor.add_merchant_order(
        merchant_order(
            "555",
            payments=[
                {"id": 2001, "status": "pending"},
                {"id": 2002, "status": "approved"},
            ],
        )
    )

    outcome = asyncio.run(EventNormalizer(processor).normalize(OrderReference(order_id="555")))

    assert outcome.payment_id == "2002"
    assert outcome.is_approved
    assert outcome.via == VIA_ORDER


def test_normalize_order_without_payments():
    processor = MockPaymentProcessor()
    processor.add_merchant_order(merchant_order("555"))

    outcome = asyncio.run(EventNormalizer(processor).normalize(OrderReference(order_id="555")))

    assert outcome.status == STATUS_NO_PAYMENTS
    assert outcome.payment_id is None
    assert not outcome.is_approved


def test_normalize_missing_payment_raises():
    normalizer = EventNormalizer(MockPaymentProcessor())
    with pytest.raises(PaymentNotFetched) as exc_info:
        asyncio.run(normalizer.normalize(PaymentReference(payment_id="404")))
    assert exc_info.value.resource_id == "404"


def test_normalize_inline_metadata():
    data = {
        "id": "sim-1",
        "status": " Approved ",
        "external_reference": "a@b.com|pro|sim",
        "metadata": {"email": "a@b.com", "plan": "pro"},
    }
    outcome = asyncio.run(EventNormalizer(MockPaymentProcessor()).normalize(InlineMetadata(data=data)))
    assert outcome.is_approved
    assert outcome.email == "a@b.com"
    assert outcome.correlation_token == "a@b.com|pro|sim"
