"""Payment notification pipeline: classify -> normalize -> resolve -> reconcile."""

from __future__ import annotations

import hmac
import logging
from typing import Any, Mapping

from config import Config
from billing.accounts import AccountDirectory, SqliteAccountDirectory
from billing.correlation import CorrelationResolver, decode_correlation_token
from billing.errors import AuthRejected, PaymentNotFetched
from billing.models import Disposition, PaymentOutcome, ProcessingReport, ProcessingState
from billing.notifications import (
    EventNormalizer,
    Unrecognized,
    VIA_ORDER,
    VIA_PAYMENT,
    classify_notification,
    notification_topic,
)
from billing.payments import PaymentProcessor
from billing.preferences import PreferenceIssuer
from billing.reconciler import StateReconciler
from billing.repository import BillingRepository


logger = logging.getLogger(__name__)


class PaymentNotificationService:
    """Use-cases behind the webhook and preference endpoints."""

    def __init__(
        self,
        config: Config,
        processor: PaymentProcessor,
        repository: BillingRepository | None = None,
        accounts: AccountDirectory | None = None,
    ) -> None:
        self.config = config
        self.processor = processor
        self.repository = repository or BillingRepository(config.db_path)
        self.accounts = accounts or SqliteAccountDirectory(self.repository)
        self.preferences = PreferenceIssuer(config, processor)
        self.normalizer = EventNormalizer(processor)
        self.resolver = CorrelationResolver()
        self.reconciler = StateReconciler(
            self.repository,
            plan_days=config.plan_days,
            accounts=self.accounts,
        )

    def authenticate(self, presented_token: str | None) -> None:
        """Raise AuthRejected unless the configured shared secret was presented."""
        required = self.config.mp_webhook_secret
        if not required:
            return
        presented = str(presented_token or "").encode("utf-8")
        if not presented or not hmac.compare_digest(presented, required.encode("utf-8")):
            raise AuthRejected("webhook token mismatch")

    async def record_raw_notification(self, body: Any, query: Mapping[str, Any] | None = None) -> None:
        """Append to the raw notification log; failures only get logged."""
        payload: dict[str, Any] = {"body": body, "query": dict(query or {})}
        topic = notification_topic(body if isinstance(body, Mapping) else {}, query)
        try:
            await self.repository.log_notification(topic=topic, payload=payload)
        except Exception:
            logger.exception("Failed to store raw notification (topic=%s)", topic)

    async def _record_payment(self, outcome: PaymentOutcome) -> None:
        if outcome.raw is None or outcome.via not in {VIA_PAYMENT, VIA_ORDER}:
            return
        try:
            await self.repository.upsert_payment(outcome.raw, decode_correlation_token(outcome.correlation_token))
        except Exception:
            logger.exception("Failed to store payment %s in ledger", outcome.payment_id)

    async def handle_notification(
        self,
        body: Mapping[str, Any],
        query: Mapping[str, Any] | None = None,
    ) -> ProcessingReport:
        """Run the whole pipeline. Never raises."""
        try:
            return await self._process(body, query or {})
        except Exception as error:
            logger.exception("Unexpected error while processing payment notification")
            return ProcessingReport(
                state=ProcessingState.FAILED,
                disposition=Disposition.ACKNOWLEDGE,
                reason=str(error) or type(error).__name__,
            )

    async def _process(self, body: Mapping[str, Any], query: Mapping[str, Any]) -> ProcessingReport:
        notification = classify_notification(
            body,
            query,
            allow_simulation=not self.config.is_production,
        )
        if isinstance(notification, Unrecognized):
            logger.info(
                "Notification ignored: %s (type=%s action=%s)",
                notification.reason,
                notification.type,
                notification.action,
            )
            return ProcessingReport(
                state=ProcessingState.IGNORED,
                disposition=Disposition.ACKNOWLEDGE,
                via="unrecognized",
                reason=notification.reason,
            )

        try:
            outcome = await self.normalizer.normalize(notification)
        except PaymentNotFetched as error:
            logger.warning(
                "Payment not fetched (%s, resource=%s, status=%s); asking sender to retry",
                error,
                error.resource_id,
                error.status,
            )
            return ProcessingReport(
                state=ProcessingState.PAYMENT_NOT_FETCHED,
                disposition=Disposition.REQUEST_RETRY,
                payment_id=error.resource_id,
                reason=str(error),
            )

        await self._record_payment(outcome)

        if not outcome.is_approved:
            logger.info("Payment %s via %s ignored: status=%s", outcome.payment_id, outcome.via, outcome.status)
            return ProcessingReport(
                state=ProcessingState.IGNORED,
                disposition=Disposition.ACKNOWLEDGE,
                via=outcome.via,
                payment_id=outcome.payment_id,
                status=outcome.status,
                reason="status_not_approved",
            )

        identity = self.resolver.resolve(outcome)
        if not identity.email:
            logger.warning(
                "Approved payment %s has no usable email (external_reference=%r); manual reconciliation needed",
                outcome.payment_id,
                outcome.correlation_token,
            )
            return ProcessingReport(
                state=ProcessingState.UNRESOLVED,
                disposition=Disposition.ACKNOWLEDGE,
                via=outcome.via,
                payment_id=outcome.payment_id,
                status=outcome.status,
                plan=identity.plan,
                reason="unresolved_identity",
            )

        result = await self.reconciler.reconcile(outcome, identity)
        if result.state in {ProcessingState.PARTIALLY_RECONCILED, ProcessingState.FAILED}:
            failed = [w.mode for w in (result.plan_write, result.business_write) if not w.ok]
            logger.error(
                "Partial write failure for payment %s (%s): failed=%s",
                outcome.payment_id,
                identity.email,
                ",".join(failed),
            )
        else:
            logger.info(
                "Payment %s reconciled: email=%s plan=%s (%s/%s) state=%s",
                outcome.payment_id,
                identity.email,
                identity.plan,
                identity.email_source,
                identity.plan_source,
                result.state.value,
            )
        return ProcessingReport(
            state=result.state,
            disposition=Disposition.ACKNOWLEDGE,
            via=outcome.via,
            payment_id=outcome.payment_id,
            status=outcome.status,
            email=identity.email,
            plan=identity.plan,
            plan_write=result.plan_write,
            business_write=result.business_write,
        )
