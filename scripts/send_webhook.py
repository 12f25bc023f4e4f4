#!/usr/bin/env python3
"""
Send a signed provider webhook to a running Keeper Settlement instance.

Examples:
  python scripts/send_webhook.py payout --order-id ORDER-1 --status COMPLETED --payout-id po_123
  python scripts/send_webhook.py seller --ref-seller-id store-1 --seller-id sel_9 --status APPROVED

The body is signed with WEBHOOK_SECRET exactly as the provider would sign it.
Re-running with the same --event-id exercises the duplicate path.
"""

from __future__ import annotations

import argparse
import json
import sys
import time
import uuid

import httpx

from app.core.config import settings
from app.services.webhooks.signature import compute_signature


def build_event(args: argparse.Namespace) -> dict:
    if args.kind == "payout":
        data = {"status": args.status}
        if args.payout_id:
            data["payoutId"] = args.payout_id
        if args.ref_payout_id:
            data["refPayoutId"] = args.ref_payout_id
        if args.order_id:
            data["orderId"] = args.order_id
        if args.failure_reason:
            data["failureReason"] = args.failure_reason
        event_type = "payout.changed"
    else:
        data = {"status": args.status, "refSellerId": args.ref_seller_id}
        if args.seller_id:
            data["sellerId"] = args.seller_id
        event_type = "seller.changed"

    return {
        "eventId": args.event_id or f"evt_{uuid.uuid4().hex}",
        "eventType": event_type,
        "timestamp": int(time.time()) - args.age,
        "data": data,
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("kind", choices=["payout", "seller"])
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--event-id")
    parser.add_argument("--status", required=True)
    parser.add_argument("--age", type=int, default=0, help="Seconds to backdate the timestamp")
    parser.add_argument("--payout-id")
    parser.add_argument("--ref-payout-id")
    parser.add_argument("--order-id")
    parser.add_argument("--failure-reason")
    parser.add_argument("--seller-id")
    parser.add_argument("--ref-seller-id")
    args = parser.parse_args(argv)

    if args.kind == "seller" and not args.ref_seller_id:
        parser.error("--ref-seller-id is required for seller events")

    event = build_event(args)
    body = json.dumps(event).encode("utf-8")
    path = "/webhooks/payout-changed" if args.kind == "payout" else "/webhooks/seller-changed"

    response = httpx.post(
        f"{args.base_url}{path}",
        content=body,
        headers={
            "Content-Type": "application/json",
            settings.webhook_signature_header: compute_signature(settings.webhook_secret, body),
        },
        timeout=10.0,
    )
    print(f"{event['eventId']} -> {response.status_code} {response.text}")
    return 0 if response.status_code < 500 else 1


if __name__ == "__main__":
    sys.exit(main())
