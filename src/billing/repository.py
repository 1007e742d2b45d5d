"""Persistence helpers for billing module."""

from __future__ import annotations

import json
from typing import Any, Mapping

from database import execute_write_with_retry, open_db, utc_now_iso
from billing.models import BusinessOwnership, CorrelationToken, SubscriberPlan


def _to_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"), default=str)


def _as_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _as_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class BillingRepository:
    """Billing persistence: plans, business ownership, payment ledger, raw notifications."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    async def log_notification(self, *, topic: str, payload: Any) -> int:
        """Append raw webhook payload. Returns row id (arrival order)."""
        async with open_db(self.db_path) as db:
            cursor = await execute_write_with_retry(
                db,
                """
                INSERT INTO payment_notifications(topic, payload_json, received_at)
                VALUES(?, ?, ?)
                """,
                (str(topic or "unknown"), _to_json(payload), utc_now_iso()),
            )
            return int(cursor.lastrowid or 0)

    async def list_notifications(self, *, limit: int = 50) -> list[dict[str, Any]]:
        safe_limit = max(1, min(int(limit), 500))
        async with open_db(self.db_path) as db:
            async with db.execute(
                """
                SELECT id, topic, payload_json, received_at
                  FROM payment_notifications
                 ORDER BY id DESC
                 LIMIT ?
                """,
                (safe_limit,),
            ) as cur:
                rows = await cur.fetchall()
                return [dict(row) for row in rows]

    async def upsert_payment(self, payment: Mapping[str, Any], token: CorrelationToken | None) -> None:
        """Mirror processor payment into the ledger (one row per payment id)."""
        payment_id = _as_text(payment.get("id"))
        if not payment_id:
            return
        order = payment.get("order") or {}
        payer = payment.get("payer") or {}
        order_id = order.get("id") if isinstance(order, Mapping) else None
        async with open_db(self.db_path) as db:
            await execute_write_with_retry(
                db,
                """
                INSERT INTO payments(
                    id, status, status_detail, transaction_amount, currency_id,
                    external_reference, email, plan, channel, payer_email, order_id,
                    raw_json, updated_at
                ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    status_detail = excluded.status_detail,
                    transaction_amount = excluded.transaction_amount,
                    currency_id = excluded.currency_id,
                    external_reference = excluded.external_reference,
                    email = excluded.email,
                    plan = excluded.plan,
                    channel = excluded.channel,
                    payer_email = excluded.payer_email,
                    order_id = excluded.order_id,
                    raw_json = excluded.raw_json,
                    updated_at = excluded.updated_at
                """,
                (
                    payment_id,
                    _as_text(payment.get("status")),
                    _as_text(payment.get("status_detail")),
                    _as_float(payment.get("transaction_amount")),
                    _as_text(payment.get("currency_id")),
                    _as_text(payment.get("external_reference")),
                    token.email if token else None,
                    token.plan if token else None,
                    token.channel if token else None,
                    _as_text(payer.get("email")) if isinstance(payer, Mapping) else None,
                    _as_text(order_id or payment.get("order_id")),
                    _to_json(payment),
                    utc_now_iso(),
                ),
            )

    async def get_payment(self, payment_id: str) -> dict[str, Any] | None:
        async with open_db(self.db_path) as db:
            async with db.execute(
                """
                SELECT id, status, status_detail, transaction_amount, currency_id,
                       external_reference, email, plan, channel, payer_email, order_id, updated_at
                  FROM payments
                 WHERE id = ?
                """,
                (str(payment_id),),
            ) as cur:
                row = await cur.fetchone()
                return dict(row) if row else None

    async def upsert_subscriber_plan(
        self,
        *,
        email: str,
        plan: str,
        plan_expires_at: str | None,
        last_payment_id: str | None,
    ) -> SubscriberPlan:
        """Last-write-wins upsert keyed by email."""
        now = utc_now_iso()
        async with open_db(self.db_path) as db:
            await execute_write_with_retry(
                db,
                """
                INSERT INTO subscriber_plans(email, plan, plan_expires_at, last_payment_id, updated_at)
                VALUES(?, ?, ?, ?, ?)
                ON CONFLICT(email) DO UPDATE SET
                    plan = excluded.plan,
                    plan_expires_at = excluded.plan_expires_at,
                    last_payment_id = excluded.last_payment_id,
                    updated_at = excluded.updated_at
                """,
                (str(email), str(plan), plan_expires_at, last_payment_id, now),
            )
            async with db.execute(
                """
                SELECT email, plan, plan_expires_at, last_payment_id, updated_at
                  FROM subscriber_plans
                 WHERE email = ?
                """,
                (str(email),),
            ) as cur:
                row = await cur.fetchone()
        if row is None:
            raise RuntimeError("Subscriber plan row missing after upsert")
        return SubscriberPlan.from_row(row)

    async def get_subscriber_plan(self, email: str) -> SubscriberPlan | None:
        async with open_db(self.db_path) as db:
            async with db.execute(
                """
                SELECT email, plan, plan_expires_at, last_payment_id, updated_at
                  FROM subscriber_plans
                 WHERE email = ?
                """,
                (str(email).strip().lower(),),
            ) as cur:
                row = await cur.fetchone()
                return SubscriberPlan.from_row(row) if row else None

    async def get_business_by_owner_email(self, owner_email: str) -> BusinessOwnership | None:
        async with open_db(self.db_path) as db:
            async with db.execute(
                """
                SELECT id, owner_email, owner_user_id, plan, status, payment_status,
                       external_reference, last_payment_id, pending_plan, created_at, updated_at
                  FROM businesses
                 WHERE owner_email = ?
                 LIMIT 1
                """,
                (str(owner_email).strip().lower(),),
            ) as cur:
                row = await cur.fetchone()
                return BusinessOwnership.from_row(row) if row else None

    async def update_business_plan(
        self,
        business_id: int,
        *,
        plan: str,
        owner_user_id: str | None,
        external_reference: str | None,
        last_payment_id: str | None,
    ) -> None:
        """Full update: plan + activation + payment correlation fields."""
        async with open_db(self.db_path) as db:
            await execute_write_with_retry(
                db,
                """
                UPDATE businesses
                   SET plan = ?,
                       status = 'active',
                       owner_user_id = COALESCE(owner_user_id, ?),
                       payment_status = 'approved',
                       external_reference = ?,
                       last_payment_id = ?,
                       pending_plan = NULL,
                       updated_at = ?
                 WHERE id = ?
                """,
                (
                    str(plan),
                    owner_user_id,
                    external_reference,
                    last_payment_id,
                    utc_now_iso(),
                    int(business_id),
                ),
            )

    async def mark_business_awaiting_link(
        self,
        business_id: int,
        *,
        pending_plan: str,
        external_reference: str | None,
        last_payment_id: str | None,
    ) -> None:
        """Guarded partial update: payment/status only, plan and owner_user_id untouched."""
        async with open_db(self.db_path) as db:
            await execute_write_with_retry(
                db,
                """
                UPDATE businesses
                   SET status = 'awaiting_link',
                       payment_status = 'approved',
                       external_reference = ?,
                       last_payment_id = ?,
                       pending_plan = ?,
                       updated_at = ?
                 WHERE id = ?
                   AND owner_user_id IS NULL
                """,
                (
                    external_reference,
                    last_payment_id,
                    str(pending_plan),
                    utc_now_iso(),
                    int(business_id),
                ),
            )

    async def create_linked_business(
        self,
        *,
        owner_email: str,
        owner_user_id: str,
        plan: str,
        external_reference: str | None,
        last_payment_id: str | None,
    ) -> BusinessOwnership:
        """Insert active linked row; a concurrent insert for the same email becomes an update."""
        now = utc_now_iso()
        async with open_db(self.db_path) as db:
            await execute_write_with_retry(
                db,
                """
                INSERT INTO businesses(
                    owner_email, owner_user_id, plan, status, payment_status,
                    external_reference, last_payment_id, pending_plan, created_at, updated_at
                ) VALUES(?, ?, ?, 'active', 'approved', ?, ?, NULL, ?, ?)
                ON CONFLICT(owner_email) DO UPDATE SET
                    owner_user_id = COALESCE(businesses.owner_user_id, excluded.owner_user_id),
                    plan = excluded.plan,
                    status = 'active',
                    payment_status = 'approved',
                    external_reference = excluded.external_reference,
                    last_payment_id = excluded.last_payment_id,
                    pending_plan = NULL,
                    updated_at = excluded.updated_at
                """,
                (
                    str(owner_email),
                    str(owner_user_id),
                    str(plan),
                    external_reference,
                    last_payment_id,
                    now,
                    now,
                ),
            )
        created = await self.get_business_by_owner_email(owner_email)
        if created is None:
            raise RuntimeError("Business row missing after insert")
        return created

    async def insert_business(
        self,
        *,
        owner_email: str,
        owner_user_id: str | None = None,
        plan: str = "free",
        status: str = "pending",
    ) -> BusinessOwnership:
        """Plain insert used by directory seeding/registration flows."""
        now = utc_now_iso()
        async with open_db(self.db_path) as db:
            await execute_write_with_retry(
                db,
                """
                INSERT INTO businesses(owner_email, owner_user_id, plan, status, created_at, updated_at)
                VALUES(?, ?, ?, ?, ?, ?)
                """,
                (str(owner_email).strip().lower(), owner_user_id, str(plan), str(status), now, now),
            )
        created = await self.get_business_by_owner_email(owner_email)
        if created is None:
            raise RuntimeError("Business row missing after insert")
        return created

    async def get_user_id_for_email(self, email: str) -> str | None:
        async with open_db(self.db_path) as db:
            async with db.execute(
                "SELECT user_id FROM accounts WHERE email = ? LIMIT 1",
                (str(email).strip().lower(),),
            ) as cur:
                row = await cur.fetchone()
                return str(row[0]) if row else None

    async def upsert_account(self, *, user_id: str, email: str) -> None:
        async with open_db(self.db_path) as db:
            await execute_write_with_retry(
                db,
                """
                INSERT INTO accounts(user_id, email, created_at)
                VALUES(?, ?, ?)
                ON CONFLICT(email) DO UPDATE SET user_id = excluded.user_id
                """,
                (str(user_id), str(email).strip().lower(), utc_now_iso()),
            )
