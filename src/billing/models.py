"""Billing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


APPROVED_STATUS = "approved"


class ProcessingState(str, Enum):
    """Terminal state of one inbound notification."""

    IGNORED = "ignored"
    UNRESOLVED = "unresolved"
    RECONCILED = "reconciled"
    PARTIALLY_RECONCILED = "partially_reconciled"
    AWAITING_LINK = "awaiting_link"
    FAILED = "failed"
    PAYMENT_NOT_FETCHED = "payment_not_fetched"
    AUTH_REJECTED = "auth_rejected"


class Disposition(str, Enum):
    """What the sender is told: accepted, or please re-deliver later."""

    ACKNOWLEDGE = "acknowledge"
    REQUEST_RETRY = "request_retry"


@dataclass(frozen=True)
class CorrelationToken:
    email: str | None
    plan: str | None
    channel: str | None = None
    duration_days: int | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.email and self.plan)


@dataclass(frozen=True)
class PaymentOutcome:
    """Canonical view of one payment, whatever shape the notification had."""

    payment_id: str | None
    status: str
    via: str
    correlation_token: str | None = None
    email: str | None = None
    plan: str | None = None
    payer_email: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    status_detail: str | None = None
    amount: float | None = None
    currency: str | None = None
    order_id: str | None = None
    date_created: str | None = None
    date_approved: str | None = None
    date_last_updated: str | None = None
    raw: Mapping[str, Any] | None = None

    @property
    def is_approved(self) -> bool:
        return str(self.status or "").strip().lower() == APPROVED_STATUS


@dataclass(frozen=True)
class ResolvedIdentity:
    email: str | None
    plan: str
    email_source: str | None
    plan_source: str
    token: CorrelationToken | None = None


@dataclass(slots=True)
class SubscriberPlan:
    email: str
    plan: str
    updated_at: str
    plan_expires_at: str | None = None
    last_payment_id: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SubscriberPlan":
        return cls(
            email=str(row["email"]),
            plan=str(row["plan"]),
            updated_at=str(row["updated_at"]),
            plan_expires_at=row["plan_expires_at"],
            last_payment_id=row["last_payment_id"],
        )


@dataclass(slots=True)
class BusinessOwnership:
    id: int
    owner_email: str
    plan: str
    status: str
    created_at: str
    updated_at: str
    owner_user_id: str | None = None
    payment_status: str | None = None
    external_reference: str | None = None
    last_payment_id: str | None = None
    pending_plan: str | None = None

    @property
    def is_linked(self) -> bool:
        return bool(self.owner_user_id)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BusinessOwnership":
        return cls(
            id=int(row["id"]),
            owner_email=str(row["owner_email"]),
            plan=str(row["plan"]),
            status=str(row["status"]),
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
            owner_user_id=row["owner_user_id"],
            payment_status=row["payment_status"],
            external_reference=row["external_reference"],
            last_payment_id=row["last_payment_id"],
            pending_plan=row["pending_plan"],
        )


@dataclass(frozen=True)
class WriteResult:
    """Result of one reconciliation write. Never merged with the other write."""

    ok: bool
    mode: str
    error: str | None = None
    awaiting_link: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "mode": self.mode,
            "error": self.error,
            "awaiting_link": self.awaiting_link,
        }


@dataclass(frozen=True)
class ReconcileResult:
    state: ProcessingState
    plan_write: WriteResult
    business_write: WriteResult


@dataclass(frozen=True)
class ProcessingReport:
    """Everything the receiver needs to log and answer one notification."""

    state: ProcessingState
    disposition: Disposition
    via: str | None = None
    payment_id: str | None = None
    status: str | None = None
    email: str | None = None
    plan: str | None = None
    reason: str | None = None
    plan_write: WriteResult | None = None
    business_write: WriteResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.state not in {
                ProcessingState.FAILED,
                ProcessingState.PAYMENT_NOT_FETCHED,
                ProcessingState.AUTH_REJECTED,
            },
            "state": self.state.value,
            "disposition": self.disposition.value,
            "via": self.via,
            "payment_id": self.payment_id,
            "status": self.status,
            "email": self.email,
            "plan": self.plan,
            "reason": self.reason,
            "plan_write": self.plan_write.to_dict() if self.plan_write else None,
            "business_write": self.business_write.to_dict() if self.business_write else None,
        }
