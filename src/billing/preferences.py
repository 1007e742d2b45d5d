"""Checkout preference issuing for plan purchases."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from config import Config
from billing.correlation import DEFAULT_CHANNEL, encode_correlation_token, normalize_email
from billing.errors import InvalidRequest
from billing.payments import CheckoutPreference, PaymentProcessor
from billing.plans import DEFAULT_PLAN, normalize_plan, plan_title


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedPreference:
    email: str
    plan: str
    unit_price: float
    external_reference: str
    auto_return: bool
    preference: CheckoutPreference

    @property
    def redirect_url(self) -> str | None:
        return self.preference.redirect_url

    def to_response(self) -> dict[str, Any]:
        return {
            "ok": True,
            "id": self.preference.preference_id,
            "init_point": self.preference.init_point,
            "sandbox_init_point": self.preference.sandbox_init_point,
            "redirect_url": self.redirect_url,
            "external_reference": self.external_reference,
            "debug": {
                "provider": self.preference.provider,
                "email": self.email,
                "plan": self.plan,
                "unit_price": self.unit_price,
                "auto_return": self.auto_return,
            },
        }


def _coerce_price(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None


class PreferenceIssuer:
    """Builds the processor preference carrying `email|plan|channel`."""

    def __init__(self, config: Config, processor: PaymentProcessor) -> None:
        self.config = config
        self.processor = processor

    def resolve_price(self, plan: str, requested_price: Any = None) -> float:
        override = _coerce_price(requested_price)
        if override is not None:
            return override
        return float(self.config.plan_prices.get(plan, self.config.plan_prices.get(DEFAULT_PLAN, 0.0)))

    def build_payload(
        self,
        *,
        email: str,
        plan: str,
        unit_price: float,
        title: str | None = None,
        channel: str = DEFAULT_CHANNEL,
    ) -> dict[str, Any]:
        external_reference = encode_correlation_token(email=email, plan=plan, channel=channel)
        payload: dict[str, Any] = {
            "items": [
                {
                    "title": str(title or "").strip() or f"Plan {plan_title(plan)}",
                    "quantity": 1,
                    "unit_price": unit_price,
                    "currency_id": self.config.mp_currency,
                }
            ],
            "payer": {"email": email},
            "external_reference": external_reference,
            "notification_url": self.config.mp_webhook_url,
            "back_urls": {
                "success": self.config.success_url,
                "failure": self.config.failure_url,
                "pending": self.config.pending_url,
            },
            "metadata": {
                "email": email,
                "plan": plan,
                "external_reference": external_reference,
            },
        }
        # The processor rejects auto_return unless the success URL is https.
        if self.config.success_url.lower().startswith("https://"):
            payload["auto_return"] = "approved"
        return payload

    async def issue(
        self,
        *,
        email: Any,
        plan: Any,
        unit_price: Any = None,
        title: str | None = None,
    ) -> IssuedPreference:
        normalized_email = normalize_email(email)
        if not normalized_email:
            raise InvalidRequest("Email inválido o faltante")

        normalized_plan = normalize_plan(plan)
        if normalized_plan is None:
            logger.info("Unknown plan %r for %s, using %s", plan, normalized_email, DEFAULT_PLAN)
            normalized_plan = DEFAULT_PLAN

        price = self.resolve_price(normalized_plan, unit_price)
        payload = self.build_payload(
            email=normalized_email,
            plan=normalized_plan,
            unit_price=price,
            title=title,
        )
        preference = await self.processor.create_preference(payload)
        logger.info(
            "Preference created: id=%s plan=%s price=%s email=%s",
            preference.preference_id,
            normalized_plan,
            price,
            normalized_email,
        )
        return IssuedPreference(
            email=normalized_email,
            plan=normalized_plan,
            unit_price=price,
            external_reference=payload["external_reference"],
            auto_return="auto_return" in payload,
            preference=preference,
        )
