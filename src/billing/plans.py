"""Shared plan matrix for directory subscriptions."""

from __future__ import annotations

from typing import Final


SUPPORTED_PLANS: Final[set[str]] = {"free", "basic", "pro", "premium"}
PAID_PLANS: Final[set[str]] = {"pro", "premium"}

# Most approved payments without explicit plan data are premium purchases.
DEFAULT_PLAN: Final[str] = "premium"

PLAN_ALIASES: Final[dict[str, str]] = {
    "basico": "basic",
    "básico": "basic",
    "profesional": "pro",
    "gratuito": "free",
}

PLAN_TITLES: Final[dict[str, str]] = {
    "free": "Gratis",
    "basic": "Básico",
    "pro": "Pro",
    "premium": "Premium",
}


def normalize_plan(raw_plan: object) -> str | None:
    """Return canonical plan name or None for unknown values."""
    value = str(raw_plan or "").strip().lower()
    if not value:
        return None
    value = PLAN_ALIASES.get(value, value)
    if value not in SUPPORTED_PLANS:
        return None
    return value


def is_paid_plan(plan: str | None) -> bool:
    return str(plan or "").strip().lower() in PAID_PLANS


def plan_title(plan: str) -> str:
    return PLAN_TITLES.get(plan, plan.title())
