import asyncio
import json

import pytest
from aiohttp.test_utils import TestClient, TestServer

from api_server import create_api_app
from billing.payments import MockPaymentProcessor
from billing.repository import BillingRepository
from factories import approved_payment


SECRET = "hook-secret"


def _run(config, processor, scenario):
    async def _inner():
        app = create_api_app(config, processor=processor)
        async with TestClient(TestServer(app)) as client:
            return await scenario(client)

    return asyncio.run(_inner())


@pytest.fixture
def processor() -> MockPaymentProcessor:
    processor = MockPaymentProcessor()
    processor.add_payment(approved_payment("1001"))
    return processor


@pytest.fixture
def secured_config(make_config):
    return make_config(mp_webhook_secret=SECRET)


def test_webhook_rejects_missing_token(secured_config, processor):
    async def scenario(client):
        resp = await client.post("/webhook_mp", json={"type": "payment", "data": {"id": "1001"}})
        return resp.status, await resp.json()

    status, body = _run(secured_config, processor, scenario)

    assert status == 401
    assert body["ok"] is False
    assert body["error"] == "unauthorized"
    assert body["state"] == "auth_rejected"
    assert asyncio.run(BillingRepository(secured_config.db_path).get_subscriber_plan("owner@example.com")) is None


@pytest.mark.parametrize(
    "params, headers",
    [
        ({"token": SECRET}, {}),
        ({}, {"X-Webhook-Token": SECRET}),
        ({}, {"Authorization": f"Bearer {SECRET}"}),
    ],
)
def test_webhook_accepts_token_sources(secured_config, processor, params, headers):
    async def scenario(client):
        resp = await client.post(
            "/webhook_mp",
            params=params,
            headers=headers,
            json={"type": "payment", "data": {"id": "1001"}},
        )
        return resp.status, await resp.json()

    status, body = _run(secured_config, processor, scenario)

    assert status == 200
    assert body["ok"] is True
    assert body["state"] == "awaiting_link"
    assert body["plan_write"]["ok"] is True
    assert body["business_write"]["awaiting_link"] is True


def test_webhook_wrong_token_is_rejected(secured_config, processor):
    async def scenario(client):
        resp = await client.post("/webhook_mp", params={"token": "nope"}, json={})
        return resp.status

    assert _run(secured_config, processor, scenario) == 401


def test_webhook_non_ascii_token_is_rejected(secured_config, processor):
    async def scenario(client):
        resp = await client.post("/webhook_mp", params={"token": "café"}, json={})
        return resp.status, await resp.json()

    status, body = _run(secured_config, processor, scenario)

    assert status == 401
    assert body["state"] == "auth_rejected"


def test_webhook_without_secret_is_open(config, processor):
    async def scenario(client):
        resp = await client.post("/webhook_mp", params={"topic": "payment", "id": "1001"})
        return resp.status, await resp.json()

    status, body = _run(config, processor, scenario)

    assert status == 200
    assert body["via"] == "payment_lookup"
    assert body["payment_id"] == "1001"


def test_webhook_unfetchable_payment_returns_202(config, processor):
    async def scenario(client):
        resp = await client.post("/webhook_mp", json={"type": "payment", "data": {"id": "404404"}})
        return resp.status, await resp.json()

    status, body = _run(config, processor, scenario)

    assert status == 202
    assert body["state"] == "payment_not_fetched"
    assert body["disposition"] == "request_retry"


def test_webhook_non_json_body_is_acknowledged(config, processor):
    async def scenario(client):
        resp = await client.post("/webhook_mp", data="not json", headers={"Content-Type": "text/plain"})
        return resp.status, await resp.json()

    status, body = _run(config, processor, scenario)

    assert status == 200
    assert body["state"] == "ignored"


def test_webhook_logs_raw_notification_without_token(secured_config, processor):
    async def scenario(client):
        await client.post(
            "/webhook_mp",
            params={"token": SECRET, "topic": "payment", "id": "1001"},
        )

    _run(secured_config, processor, scenario)

    rows = asyncio.run(BillingRepository(secured_config.db_path).list_notifications())
    assert len(rows) == 1
    payload = json.loads(rows[0]["payload_json"])
    assert payload["query"] == {"topic": "payment", "id": "1001"}
    assert rows[0]["topic"] == "payment"


def test_webhook_liveness_and_self_test(secured_config, processor):
    async def scenario(client):
        ping = await client.get("/webhook_mp")
        unauthorized = await client.get("/webhook_mp", params={"test": "1"})
        self_test = await client.get("/webhook_mp", params={"test": "1", "token": SECRET})
        version = await client.get("/webhook_mp/__version")
        return (
            ping.status,
            await ping.json(),
            unauthorized.status,
            await self_test.json(),
            await version.json(),
        )

    ping_status, ping, unauthorized_status, self_test, version = _run(secured_config, processor, scenario)

    assert ping_status == 200
    assert ping == {"ok": True, "route": "/webhook_mp"}
    assert unauthorized_status == 401
    assert self_test == {"ok": True, "via": "OK_TEST"}
    assert version["secret_required"] is True
    assert version["processor"] == "mock"


def test_create_preference_endpoint(config, processor):
    async def scenario(client):
        resp = await client.post("/api/create_preference", json={"email": "owner@example.com", "plan": "pro"})
        return resp.status, await resp.json()

    status, body = _run(config, processor, scenario)

    assert status == 201
    assert body["ok"] is True
    assert body["redirect_url"].startswith("https://mock.checkout.local/checkout?pref_id=")
    assert body["external_reference"] == "owner@example.com|pro|web"
    assert body["debug"]["unit_price"] == 300.0


def test_create_preference_invalid_email(config, processor):
    async def scenario(client):
        resp = await client.post("/create_preference", json={"email": "nope", "plan": "pro"})
        return resp.status, await resp.json()

    status, body = _run(config, processor, scenario)

    assert status == 400
    assert body["ok"] is False
    assert body["error"] == "invalid_request"


def test_create_preference_other_action_is_ignored(config, processor):
    async def scenario(client):
        resp = await client.post("/create_preference", json={"action": "ping"})
        return resp.status, await resp.json()

    status, body = _run(config, processor, scenario)

    assert status == 200
    assert body["ignored_action"] == {"action": "ping"}
    assert processor.preferences == []


def test_health(config, processor):
    async def scenario(client):
        resp = await client.get("/health")
        return await resp.json()

    body = _run(config, processor, scenario)

    assert body["ok"] is True
    assert body["mp"]["has_access_token"] is True
    assert "TEST-0000-access-token" not in json.dumps(body)
