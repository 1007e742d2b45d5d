"""Correlation token helpers and subscriber identity resolution."""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping
from urllib.parse import parse_qsl

from billing.errors import InvalidCorrelationToken
from billing.models import CorrelationToken, PaymentOutcome, ResolvedIdentity
from billing.plans import DEFAULT_PLAN, normalize_plan


logger = logging.getLogger(__name__)

TOKEN_SEPARATOR = "|"
DEFAULT_CHANNEL = "web"
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(value: object) -> bool:
    if not isinstance(value, str):
        return False
    return bool(EMAIL_RE.match(value.strip()))


def normalize_email(value: object) -> str | None:
    """Lower-cased trimmed email, or None when it does not look like an address."""
    if not is_valid_email(value):
        return None
    return str(value).strip().lower()


def encode_correlation_token(*, email: str, plan: str, channel: str = DEFAULT_CHANNEL) -> str:
    normalized_email = normalize_email(email)
    normalized_plan = normalize_plan(plan)
    if not normalized_email or not normalized_plan:
        raise InvalidCorrelationToken("email and plan are required for a correlation token")
    safe_channel = str(channel or DEFAULT_CHANNEL).strip().replace(TOKEN_SEPARATOR, "-") or DEFAULT_CHANNEL
    return TOKEN_SEPARATOR.join((normalized_email, normalized_plan, safe_channel))


def _positive_days(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = round(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return None
    return number if number > 0 else None


def decode_correlation_token(raw_token: object) -> CorrelationToken:
    """Parse `email|plan|channel[|days]`; fields that fail validation come back as None.

    The legacy query-string form (`email=a@b.com&plan=pro&tag=web&duration=30`)
    is accepted too, with `months`/`years` converted to 30/365 days. Anything
    beyond the fourth pipe field is ignored.
    """
    raw = str(raw_token or "").strip()
    if not raw:
        return CorrelationToken(email=None, plan=None, channel=None)

    if TOKEN_SEPARATOR in raw:
        parts = raw.split(TOKEN_SEPARATOR)
        channel = parts[2].strip() if len(parts) > 2 and parts[2].strip() else None
        return CorrelationToken(
            email=normalize_email(parts[0]),
            plan=normalize_plan(parts[1]) if len(parts) > 1 else None,
            channel=channel,
            duration_days=_positive_days(parts[3]) if len(parts) > 3 else None,
        )

    if "=" in raw:
        params = dict(parse_qsl(raw.lstrip("?"), keep_blank_values=False))
        channel = str(params.get("tag") or params.get("channel") or "").strip() or None
        months = _positive_days(params.get("months"))
        years = _positive_days(params.get("years"))
        duration_days = (
            _positive_days(params.get("duration") or params.get("duration_days"))
            or (years * 365 if years else None)
            or (months * 30 if months else None)
        )
        return CorrelationToken(
            email=normalize_email(params.get("email")),
            plan=normalize_plan(params.get("plan")),
            channel=channel,
            duration_days=duration_days,
        )

    return CorrelationToken(email=None, plan=None, channel=None)


def parse_correlation_token(raw_token: object) -> CorrelationToken:
    """Strict variant: raise InvalidCorrelationToken unless email and plan both parse."""
    token = decode_correlation_token(raw_token)
    if not token.is_complete:
        raise InvalidCorrelationToken(
            "correlation token is missing a valid email or plan",
            token=str(raw_token or "") or None,
        )
    return token


def _metadata_value(metadata: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = metadata.get(key)
        if value:
            return value
    return None


class CorrelationResolver:
    """Resolve (email, plan) for an outcome: token -> processor metadata -> payer email."""

    def __init__(self, default_plan: str = DEFAULT_PLAN) -> None:
        self.default_plan = default_plan

    def resolve(self, outcome: PaymentOutcome) -> ResolvedIdentity:
        token: CorrelationToken | None = None
        if outcome.correlation_token:
            try:
                token = parse_correlation_token(outcome.correlation_token)
            except InvalidCorrelationToken as error:
                token = decode_correlation_token(outcome.correlation_token)
                logger.info(
                    "Payment %s: %s (%r), falling back to metadata",
                    outcome.payment_id,
                    error,
                    outcome.correlation_token,
                )

        if token is not None and token.is_complete:
            return ResolvedIdentity(
                email=token.email,
                plan=str(token.plan),
                email_source="token",
                plan_source="token",
                token=token,
            )

        metadata = outcome.metadata or {}
        email, email_source = self._resolve_email(token, metadata, outcome)
        plan, plan_source = self._resolve_plan(token, metadata)
        return ResolvedIdentity(
            email=email,
            plan=plan,
            email_source=email_source,
            plan_source=plan_source,
            token=token,
        )

    def _resolve_email(
        self,
        token: CorrelationToken | None,
        metadata: Mapping[str, Any],
        outcome: PaymentOutcome,
    ) -> tuple[str | None, str | None]:
        if token is not None and token.email:
            return token.email, "token"
        metadata_email = normalize_email(_metadata_value(metadata, "email", "email_for_backoffice"))
        if metadata_email:
            return metadata_email, "metadata"
        if outcome.email:
            inline_email = normalize_email(outcome.email)
            if inline_email:
                return inline_email, "inline"
        payer_email = normalize_email(outcome.payer_email)
        if payer_email:
            return payer_email, "payer"
        return None, None

    def _resolve_plan(
        self,
        token: CorrelationToken | None,
        metadata: Mapping[str, Any],
    ) -> tuple[str, str]:
        if token is not None and token.plan:
            return token.plan, "token"
        metadata_plan = normalize_plan(_metadata_value(metadata, "plan", "plan_type"))
        if metadata_plan:
            return metadata_plan, "metadata"
        return self.default_plan, "default"
