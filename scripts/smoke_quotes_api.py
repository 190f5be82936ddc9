#!/usr/bin/env python3
"""
Smoke test for a running Quotes Aggregator API: create a quote, replay the same
Idempotency-Key, fetch the quote back, and show the circuit breaker state.

Start the API first (in another terminal):
  DEV_API_TOKEN=local-dev-token uvicorn quotes_aggregator.api.main:app --host 127.0.0.1 --port 3000

Then run this script:
  python scripts/smoke_quotes_api.py --token local-dev-token
  python scripts/smoke_quotes_api.py --base-url http://127.0.0.1:3000 --token local-dev-token --burst 20

If you see "Connection refused", the API is not running; start uvicorn as above.
"""

from __future__ import annotations

import argparse
import uuid
from collections import Counter
from datetime import date, timedelta
from typing import Any, Dict

import httpx


def quote_payload(document_type: str = "AUTO") -> Dict[str, Any]:
    effective = date.today() + timedelta(days=1)
    return {
        "documentId": "DOC-SMOKE-001",
        "documentType": document_type,
        "insuredName": "Jane Doe",
        "insuredEmail": "jane@example.com",
        "coverageAmount": 50000,
        "currency": "USD",
        "effectiveDate": effective.isoformat(),
        "expiryDate": (effective + timedelta(days=365)).isoformat(),
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Smoke test the quotes API (idempotency + circuit breaker)")
    parser.add_argument("--base-url", default="http://localhost:3000", help="API base URL")
    parser.add_argument("--token", required=True, help="Bearer token (DEV_API_TOKEN in non-production)")
    parser.add_argument("--burst", type=int, default=0, help="Extra quotes to create to exercise the breaker")
    args = parser.parse_args()
    base = args.base_url.rstrip("/")
    headers = {"Authorization": f"Bearer {args.token}"}

    print("=== Quotes API smoke test ===\n")
    with httpx.Client(base_url=base, headers=headers, timeout=10) as client:
        key = str(uuid.uuid4())
        print(f"1) POST /api/v1/quotes (Idempotency-Key {key})")
        try:
            first = client.post("/api/v1/quotes", json=quote_payload(), headers={"Idempotency-Key": key})
        except httpx.RequestError as e:
            print(f"   FAIL: {e}")
            print("   → Start the API first: uvicorn quotes_aggregator.api.main:app --port 3000")
            return 1
        print(f"   {first.status_code} {first.headers.get('X-Idempotency-Result')} body={first.text[:300]}\n")
        if first.status_code != 201:
            return 1
        quote = first.json()

        print("2) POST /api/v1/quotes again with the same key")
        second = client.post("/api/v1/quotes", json=quote_payload(), headers={"Idempotency-Key": key})
        same = second.json().get("quoteId") == quote["quoteId"]
        print(f"   {second.status_code} {second.headers.get('X-Idempotency-Result')} same_quote={same}\n")

        print(f"3) GET /api/v1/quotes/{quote['quoteId']}")
        fetched = client.get(f"/api/v1/quotes/{quote['quoteId']}")
        print(f"   {fetched.status_code} status={fetched.json().get('status')} premium={fetched.json().get('premium')}\n")

        if args.burst:
            print(f"4) Creating {args.burst} quotes")
            statuses: Counter = Counter()
            for _ in range(args.burst):
                res = client.post("/api/v1/quotes", json=quote_payload(), headers={"Idempotency-Key": str(uuid.uuid4())})
                statuses[res.json().get("status", res.status_code)] += 1
            print(f"   outcomes: {dict(statuses)}\n")

        health = client.get("/health").json()
        print(f"Health: {health['status']} breaker={health['checks']['circuitBreaker']['state']}")

    return 0 if same else 1


if __name__ == "__main__":
    raise SystemExit(main())
