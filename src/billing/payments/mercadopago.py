"""Mercado Pago REST client (preferences, payments, merchant orders)."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from urllib.parse import quote

import aiohttp

from billing.errors import InvalidRequest, PaymentNotFetched, UpstreamUnavailable
from .base import CheckoutPreference


logger = logging.getLogger(__name__)

PREFERENCES_PATH = "/checkout/preferences"
PAYMENT_PATH = "/v1/payments/{id}"
MERCHANT_ORDER_PATH = "/merchant_orders/{id}"
USER_AGENT = "DirectoryBilling/1.0"


def _decode_body(raw_text: str) -> Any:
    if not raw_text:
        return None
    try:
        return json.loads(raw_text)
    except ValueError:
        return {"raw": raw_text}


class MercadoPagoClient:
    provider_name = "mercadopago"

    def __init__(
        self,
        *,
        access_token: str,
        base_url: str = "https://api.mercadopago.com",
        timeout_sec: float = 5.0,
    ) -> None:
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path if path.startswith('/') else '/' + path}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> tuple[int, Any]:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.request(method, self._url(path), headers=self._headers(), json=payload) as resp:
                raw_text = await resp.text()
                return resp.status, _decode_body(raw_text)

    async def create_preference(self, payload: dict[str, Any]) -> CheckoutPreference:
        if not self.access_token:
            raise UpstreamUnavailable("MP_ACCESS_TOKEN is not configured")
        try:
            status, data = await self._request("POST", PREFERENCES_PATH, payload)
        except asyncio.TimeoutError as error:
            raise UpstreamUnavailable("Mercado Pago preference request timed out") from error
        except aiohttp.ClientError as error:
            raise UpstreamUnavailable(f"Mercado Pago unreachable: {error}") from error

        if 400 <= status < 500:
            logger.warning("Mercado Pago rejected preference: %s %s", status, data)
            raise InvalidRequest("Mercado Pago rejected the preference", status=status, details=data)
        if not 200 <= status < 300:
            logger.warning("Mercado Pago preference failed: %s", status)
            raise UpstreamUnavailable("Mercado Pago preference failed", status=status, details=data)
        if not isinstance(data, dict):
            raise UpstreamUnavailable("Mercado Pago returned an empty preference", status=status)

        return CheckoutPreference(
            provider=self.provider_name,
            preference_id=str(data.get("id")) if data.get("id") is not None else None,
            external_reference=str(data.get("external_reference") or payload.get("external_reference") or ""),
            init_point=data.get("init_point") or None,
            sandbox_init_point=data.get("sandbox_init_point") or None,
            raw=data,
        )

    async def _fetch_resource(self, path_template: str, resource_id: str, kind: str) -> dict[str, Any]:
        if not self.access_token:
            raise PaymentNotFetched(f"{kind}: MP_ACCESS_TOKEN is not configured", resource_id=resource_id)
        path = path_template.format(id=quote(str(resource_id), safe=""))
        try:
            status, data = await self._request("GET", path)
        except asyncio.TimeoutError as error:
            logger.error("Mercado Pago %s %s: timeout", kind, resource_id)
            raise PaymentNotFetched(f"{kind} fetch timed out", resource_id=resource_id) from error
        except aiohttp.ClientError as error:
            logger.error("Mercado Pago %s %s: %s", kind, resource_id, error)
            raise PaymentNotFetched(f"{kind} fetch failed: {error}", resource_id=resource_id) from error

        if not 200 <= status < 300:
            logger.warning("Mercado Pago %s %s: status %s", kind, resource_id, status)
            raise PaymentNotFetched(f"{kind} fetch failed", resource_id=resource_id, status=status)
        if not isinstance(data, dict) or not data or set(data) == {"raw"}:
            raise PaymentNotFetched(f"{kind} fetch returned no body", resource_id=resource_id, status=status)
        return data

    async def fetch_payment(self, payment_id: str) -> dict[str, Any]:
        return await self._fetch_resource(PAYMENT_PATH, payment_id, "payment")

    async def fetch_merchant_order(self, order_id: str) -> dict[str, Any]:
        return await self._fetch_resource(MERCHANT_ORDER_PATH, order_id, "merchant_order")
