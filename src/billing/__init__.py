"""Plan billing: checkout preferences and payment notification reconciliation."""

from billing.errors import (
    AuthRejected,
    BillingError,
    InvalidCorrelationToken,
    InvalidRequest,
    PaymentNotFetched,
    UpstreamUnavailable,
)
from billing.models import Disposition, PaymentOutcome, ProcessingReport, ProcessingState
from billing.service import PaymentNotificationService

__all__ = [
    "AuthRejected",
    "BillingError",
    "Disposition",
    "InvalidCorrelationToken",
    "InvalidRequest",
    "PaymentNotFetched",
    "PaymentNotificationService",
    "PaymentOutcome",
    "ProcessingReport",
    "ProcessingState",
    "UpstreamUnavailable",
]
