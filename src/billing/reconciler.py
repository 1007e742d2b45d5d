"""Apply approved payment outcomes to subscriber plans and business ownership."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from billing.accounts import AccountDirectory, NoopAccountDirectory
from billing.models import (
    BusinessOwnership,
    CorrelationToken,
    PaymentOutcome,
    ProcessingState,
    ReconcileResult,
    ResolvedIdentity,
    WriteResult,
)
from billing.plans import is_paid_plan
from billing.repository import BillingRepository


logger = logging.getLogger(__name__)


def _parse_iso_utc(raw_value: str | None) -> datetime | None:
    if not raw_value:
        return None
    try:
        parsed = datetime.fromisoformat(str(raw_value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def plan_duration_days(
    plan: str,
    plan_days: Mapping[str, int],
    metadata: Mapping[str, Any] | None = None,
    token: CorrelationToken | None = None,
) -> int:
    """Days granted by one payment: metadata, then the correlation token hint, then the plan table."""
    metadata = metadata or {}
    explicit = _positive_int(metadata.get("duration_days")) or _positive_int(metadata.get("duration"))
    if explicit:
        return explicit
    if token is not None and token.duration_days:
        return token.duration_days
    return max(0, int(plan_days.get(plan, 0)))


def _expiry_anchor(outcome: PaymentOutcome) -> datetime | None:
    return _parse_iso_utc(outcome.date_approved) or _parse_iso_utc(outcome.date_created)


def plan_expires_at(
    outcome: PaymentOutcome,
    plan: str,
    plan_days: Mapping[str, int],
    token: CorrelationToken | None = None,
) -> str | None:
    """Expiry anchored at the provider approval time so redelivery writes the same value."""
    days = plan_duration_days(plan, plan_days, outcome.metadata, token)
    if days <= 0:
        return None
    anchor = _expiry_anchor(outcome) or datetime.now(timezone.utc)
    return (anchor + timedelta(days=days)).isoformat()


class StateReconciler:
    """Owns every write to subscriber_plans and businesses."""

    def __init__(
        self,
        repository: BillingRepository,
        *,
        plan_days: Mapping[str, int],
        accounts: AccountDirectory | None = None,
    ) -> None:
        self.repository = repository
        self.plan_days = dict(plan_days)
        self.accounts = accounts or NoopAccountDirectory()

    async def reconcile(self, outcome: PaymentOutcome, identity: ResolvedIdentity) -> ReconcileResult:
        if not outcome.is_approved:
            raise ValueError("Only approved outcomes can be reconciled")
        if not identity.email:
            raise ValueError("Reconciliation requires a resolved email")

        # Both writes run even if the first one fails.
        plan_write = await self._apply_plan(outcome, identity)
        business_write = await self._apply_business(outcome, identity)

        if plan_write.ok and business_write.ok:
            state = ProcessingState.AWAITING_LINK if business_write.awaiting_link else ProcessingState.RECONCILED
        elif plan_write.ok or business_write.ok:
            state = ProcessingState.PARTIALLY_RECONCILED
        else:
            state = ProcessingState.FAILED
        return ReconcileResult(state=state, plan_write=plan_write, business_write=business_write)

    async def _apply_plan(self, outcome: PaymentOutcome, identity: ResolvedIdentity) -> WriteResult:
        email = str(identity.email)
        try:
            expires_at = plan_expires_at(outcome, identity.plan, self.plan_days, identity.token)
            if expires_at and _expiry_anchor(outcome) is None and outcome.payment_id:
                # No provider date to anchor on: a redelivered payment keeps its stored expiry.
                current = await self.repository.get_subscriber_plan(email)
                if (
                    current is not None
                    and current.last_payment_id == outcome.payment_id
                    and current.plan == identity.plan
                    and current.plan_expires_at
                ):
                    expires_at = current.plan_expires_at
            await self.repository.upsert_subscriber_plan(
                email=email,
                plan=identity.plan,
                plan_expires_at=expires_at,
                last_payment_id=outcome.payment_id,
            )
        except Exception as error:
            logger.exception("Plan upsert failed for %s (payment %s)", email, outcome.payment_id)
            return WriteResult(ok=False, mode="plan_upsert", error=str(error) or type(error).__name__)
        return WriteResult(ok=True, mode="plan_upsert")

    async def _apply_business(self, outcome: PaymentOutcome, identity: ResolvedIdentity) -> WriteResult:
        email = str(identity.email)
        try:
            existing = await self.repository.get_business_by_owner_email(email)
            if existing is not None:
                return await self._update_existing(existing, outcome, identity)
            return await self._create_if_linkable(outcome, identity)
        except Exception as error:
            logger.exception("Business reconciliation failed for %s (payment %s)", email, outcome.payment_id)
            return WriteResult(ok=False, mode="business", error=str(error) or type(error).__name__)

    async def _lookup_user_id(self, email: str) -> str | None:
        user_id = await self.accounts.get_user_id_for_email(email)
        return str(user_id) if user_id else None

    async def _update_existing(
        self,
        business: BusinessOwnership,
        outcome: PaymentOutcome,
        identity: ResolvedIdentity,
    ) -> WriteResult:
        if not business.is_linked and is_paid_plan(identity.plan):
            # Paid plan cannot go active on an unlinked row: payment fields only.
            await self.repository.mark_business_awaiting_link(
                business.id,
                pending_plan=identity.plan,
                external_reference=outcome.correlation_token,
                last_payment_id=outcome.payment_id,
            )
            logger.info(
                "Business %s (%s) paid %s but has no linked owner yet",
                business.id,
                business.owner_email,
                identity.plan,
            )
            return WriteResult(ok=True, mode="awaiting_link", awaiting_link=True)

        await self.repository.update_business_plan(
            business.id,
            plan=identity.plan,
            owner_user_id=business.owner_user_id,
            external_reference=outcome.correlation_token,
            last_payment_id=outcome.payment_id,
        )
        return WriteResult(ok=True, mode="update")

    async def _create_if_linkable(self, outcome: PaymentOutcome, identity: ResolvedIdentity) -> WriteResult:
        email = str(identity.email)
        if not is_paid_plan(identity.plan):
            return WriteResult(ok=True, mode="noop")

        user_id = await self._lookup_user_id(email)
        if not user_id:
            logger.info("Approved %s payment for %s: no account to link, business deferred", identity.plan, email)
            return WriteResult(ok=True, mode="awaiting_link", awaiting_link=True)

        await self.repository.create_linked_business(
            owner_email=email,
            owner_user_id=user_id,
            plan=identity.plan,
            external_reference=outcome.correlation_token,
            last_payment_id=outcome.payment_id,
        )
        return WriteResult(ok=True, mode="insert")
