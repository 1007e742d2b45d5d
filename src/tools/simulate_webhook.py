"""Post simulated Mercado Pago notifications to a running billing API.

Examples:
  python3 src/tools/simulate_webhook.py approved --email owner@example.com --plan pro
  python3 src/tools/simulate_webhook.py payment --id 123456789
  python3 src/tools/simulate_webhook.py order --id 987654321
"""

import argparse
import asyncio
import json
import sys
from typing import Any

import aiohttp


def _build_body(args: argparse.Namespace) -> tuple[dict[str, Any], dict[str, str]]:
    if args.kind == "approved":
        external_reference = f"{args.email}|{args.plan}|sim"
        body = {
            "type": "payment",
            "data": {
                "id": args.id or "sim-1",
                "status": args.status,
                "external_reference": external_reference,
                "metadata": {"email": args.email, "plan": args.plan},
            },
        }
        return body, {}
    if args.kind == "payment":
        return {"type": "payment", "action": "payment.updated", "data": {"id": args.id}}, {}
    if args.kind == "order":
        return {}, {"topic": "merchant_order", "id": str(args.id)}
    raise ValueError(f"unknown kind: {args.kind}")


async def _post(url: str, body: dict[str, Any], params: dict[str, str], token: str | None) -> int:
    headers = {"Content-Type": "application/json"}
    if token:
        headers["X-Webhook-Token"] = token
    timeout = aiohttp.ClientTimeout(total=10)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.post(url, json=body, params=params, headers=headers) as resp:
            text = await resp.text()
            try:
                print(json.dumps(json.loads(text), ensure_ascii=False, indent=2))
            except ValueError:
                print(text)
            return resp.status


def main() -> int:
    parser = argparse.ArgumentParser(description="Simulate Mercado Pago notifications")
    parser.add_argument("kind", choices=["approved", "payment", "order"])
    parser.add_argument("--url", default="http://localhost:3001/webhook_mp")
    parser.add_argument("--token", default=None, help="MP_WEBHOOK_SECRET value, if configured")
    parser.add_argument("--id", default=None)
    parser.add_argument("--email", default="owner@example.com")
    parser.add_argument("--plan", default="premium")
    parser.add_argument("--status", default="approved")
    args = parser.parse_args()

    if args.kind in {"payment", "order"} and not args.id:
        parser.error("--id is required for payment/order notifications")

    body, params = _build_body(args)
    status = asyncio.run(_post(args.url, body, params, args.token))
    print(f"HTTP {status}", file=sys.stderr)
    return 0 if status < 400 else 1


if __name__ == "__main__":
    raise SystemExit(main())
