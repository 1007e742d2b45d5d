"""
HTTP API: Mercado Pago webhook receiver and checkout preference endpoint.

Endpoint: POST /webhook_mp
Body: any of the Mercado Pago notification shapes, e.g.
    {"type": "payment", "action": "payment.updated", "data": {"id": "123"}}
    or POST /webhook_mp?topic=payment&id=123

Response: 200 {"ok": true, "state": "reconciled", ...}
          202 when the payment could not be fetched (Mercado Pago re-delivers)
          401 when MP_WEBHOOK_SECRET is set and not presented

Endpoint: POST /create_preference
Body: {"email": "owner@example.com", "plan": "pro", "unit_price": 300?, "title": "..."?}
Response: 201 {"ok": true, "id": "...", "init_point": "...", "redirect_url": "..."}
"""

import json
import logging
from typing import Any

from aiohttp import web

from billing import (
    AuthRejected,
    Disposition,
    InvalidRequest,
    PaymentNotificationService,
    ProcessingReport,
    ProcessingState,
    UpstreamUnavailable,
)
from billing.accounts import AccountDirectory
from billing.payments import PaymentProcessor, build_payment_processor
from config import APP_VERSION, Config, mask_secret


logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("billing_service", PaymentNotificationService)
CONFIG_KEY = web.AppKey("config", Config)

HTTP_RETRY_STATUS = 202


def _extract_webhook_token(request: web.Request) -> str:
    """Extract shared secret from ?token=, X-Webhook-Token header, or Bearer auth."""
    query_key = str(request.query.get("token") or "").strip()
    if query_key:
        return query_key

    header_key = str(request.headers.get("X-Webhook-Token") or "").strip()
    if header_key:
        return header_key

    auth_header = str(request.headers.get("Authorization") or "").strip()
    if auth_header.lower().startswith("bearer "):
        bearer = auth_header[7:].strip()
        if bearer:
            return bearer

    return ""


async def _read_json_body(request: web.Request) -> dict[str, Any]:
    """Parse body as JSON regardless of content-type; anything else becomes {}."""
    if not request.can_read_body:
        return {}
    try:
        raw = await request.text()
    except Exception:
        logger.warning("Failed to read request body", exc_info=True)
        return {}
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.info("Webhook body is not JSON (%d bytes)", len(raw))
        return {}
    return data if isinstance(data, dict) else {}


def _unauthorized() -> web.Response:
    report = ProcessingReport(
        state=ProcessingState.AUTH_REJECTED,
        disposition=Disposition.ACKNOWLEDGE,
        reason="webhook token mismatch",
    )
    return web.json_response({**report.to_dict(), "error": "unauthorized"}, status=401)


async def _run_pipeline(request: web.Request, body: dict[str, Any]) -> web.Response:
    service = request.app[SERVICE_KEY]
    query = dict(request.query)
    query.pop("token", None)

    await service.record_raw_notification(body, query)
    report = await service.handle_notification(body, query)

    status = HTTP_RETRY_STATUS if report.disposition is Disposition.REQUEST_RETRY else 200
    logger.info(
        "webhook_mp: state=%s via=%s payment=%s -> %s",
        report.state.value,
        report.via,
        report.payment_id,
        status,
    )
    return web.json_response(report.to_dict(), status=status)


async def webhook_handler(request: web.Request) -> web.Response:
    """Обробник нотифікацій Mercado Pago."""
    service = request.app[SERVICE_KEY]
    try:
        service.authenticate(_extract_webhook_token(request))
    except AuthRejected:
        logger.warning("webhook_mp: rejected call from %s (bad token)", request.remote)
        return _unauthorized()

    body = await _read_json_body(request)
    return await _run_pipeline(request, body)


async def webhook_ping_handler(request: web.Request) -> web.Response:
    """Liveness for Mercado Pago / tunnels; `?test=1` runs an inline self-test."""
    if not request.query.get("test"):
        return web.json_response({"ok": True, "route": "/webhook_mp"})

    service = request.app[SERVICE_KEY]
    try:
        service.authenticate(_extract_webhook_token(request))
    except AuthRejected:
        return _unauthorized()

    body = await _read_json_body(request)
    if not body:
        return web.json_response({"ok": True, "via": "OK_TEST"})
    return await _run_pipeline(request, body)


async def webhook_version_handler(request: web.Request) -> web.Response:
    config = request.app[CONFIG_KEY]
    return web.json_response(
        {
            "ok": True,
            "version": APP_VERSION,
            "processor": request.app[SERVICE_KEY].processor.provider_name,
            "webhook_url": config.mp_webhook_url,
            "secret_required": bool(config.mp_webhook_secret),
        }
    )


async def create_preference_handler(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    body = await _read_json_body(request)

    action = str(body.get("action") or "").strip().lower()
    if action and action != "create_preference":
        return web.json_response({"ok": True, "ignored_action": {"action": action}})

    try:
        issued = await service.preferences.issue(
            email=body.get("email") or body.get("payer_email"),
            plan=body.get("plan") or body.get("plan_type"),
            unit_price=body.get("unit_price"),
            title=body.get("title"),
        )
    except InvalidRequest as error:
        return web.json_response(
            {
                "ok": False,
                "error": "invalid_request",
                "message": str(error),
                "details": error.details,
            },
            status=400,
        )
    except UpstreamUnavailable as error:
        logger.error("create_preference: processor unavailable: %s (status=%s)", error, error.status)
        return web.json_response(
            {"ok": False, "error": "upstream_unavailable", "message": str(error)},
            status=502,
        )
    return web.json_response(issued.to_response(), status=201)


async def health_handler(request: web.Request) -> web.Response:
    config = request.app[CONFIG_KEY]
    return web.json_response(
        {
            "ok": True,
            "version": APP_VERSION,
            "env": config.app_env,
            "mp": {
                "has_access_token": bool(config.mp_access_token),
                "access_token": mask_secret(config.mp_access_token),
                "webhook": config.mp_webhook_url,
            },
        }
    )


def create_api_app(
    config: Config,
    *,
    processor: PaymentProcessor | None = None,
    accounts: AccountDirectory | None = None,
) -> web.Application:
    """Створити aiohttp додаток для API сервера."""
    app = web.Application()
    app[CONFIG_KEY] = config
    app[SERVICE_KEY] = PaymentNotificationService(
        config,
        processor or build_payment_processor(config),
        accounts=accounts,
    )

    app.router.add_post("/webhook_mp", webhook_handler)
    app.router.add_get("/webhook_mp", webhook_ping_handler)
    app.router.add_get("/webhook_mp/__version", webhook_version_handler)

    app.router.add_post("/create_preference", create_preference_handler)
    app.router.add_post("/api/create_preference", create_preference_handler)

    app.router.add_get("/health", health_handler)
    app.router.add_get("/", health_handler)

    return app


async def start_api_server(app: web.Application) -> web.AppRunner:
    """Запустити API сервер."""
    config = app[CONFIG_KEY]
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.api_host, config.api_port)
    await site.start()

    logger.info("API server started on %s:%s", config.api_host, config.api_port)
    return runner


async def stop_api_server(runner: web.AppRunner) -> None:
    """Зупинити API сервер."""
    await runner.cleanup()
    logger.info("API server stopped")
