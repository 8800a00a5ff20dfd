#!/usr/bin/env python3
"""Redelivery storm: the same purchase webhook, many times at once.

RUN:  WEBHOOK_SECRET=... python scripts/redelivery_storm.py [copies]

Fires COPIES identical deliveries concurrently, then one transaction-less
pair, and prints the status codes.  A healthy service answers exactly one
201 per purchase and 200 for every other copy, and all responses name
the same account and enrollment.

Prerequisites:
  - The API must be running: uvicorn app.main:app --port 8000
  - WEBHOOK_SECRET must match the server's
  - The course below must exist and be published (the in-memory catalog
    seeds it)
"""

from __future__ import annotations

import asyncio
import os
import sys
import time
import uuid
from collections import Counter

import httpx

BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000")
COURSE_ID = "intro-to-python"


async def _storm(client: httpx.AsyncClient, payload: dict, copies: int) -> list:
    return await asyncio.gather(
        *(client.post("/v1/purchases", json=payload) for _ in range(copies))
    )


def _report(label: str, responses: list[httpx.Response]) -> bool:
    statuses = Counter(r.status_code for r in responses)
    ok = [r.json() for r in responses if r.status_code in (200, 201)]
    accounts = {body["account"]["id"] for body in ok}
    enrollments = {body["enrollment"]["id"] for body in ok}
    fresh = sum(1 for body in ok if body["is_new_user"] and body["is_new_enrollment"])

    print(f"{label}")
    for code, count in sorted(statuses.items()):
        print(f"  {code}: {count}")
    print(f"  distinct accounts:    {len(accounts)}")
    print(f"  distinct enrollments: {len(enrollments)}")
    print(f"  new user + new enrollment reported: {fresh}")
    print()
    return statuses.get(201, 0) == 1 and len(accounts) == len(enrollments) == 1


async def main(copies: int) -> int:
    secret = os.environ.get("WEBHOOK_SECRET")
    if not secret:
        print("WEBHOOK_SECRET is not set")
        return 1

    run = uuid.uuid4().hex[:8]
    headers = {"Authorization": f"Bearer {secret}"}

    async with httpx.AsyncClient(base_url=BASE_URL, headers=headers, timeout=30) as client:
        start = time.monotonic()
        with_id = await _storm(
            client,
            {
                "email": f"storm-{run}@example.com",
                "full_name": "Storm Buyer",
                "course_id": COURSE_ID,
                "transaction_id": f"STORM-{run}",
            },
            copies,
        )
        without_id = await _storm(
            client,
            {
                "email": f"storm-derived-{run}@example.com",
                "full_name": "Storm Buyer",
                "course_id": COURSE_ID,
            },
            2,
        )
        elapsed = time.monotonic() - start

    passed = _report(f"{copies} copies with transaction id", with_id)
    passed &= _report("2 copies without transaction id", without_id)
    print(f"elapsed: {elapsed:.2f}s  result: {'PASS' if passed else 'FAIL'}")
    return 0 if passed else 1


if __name__ == "__main__":
    copies = int(sys.argv[1]) if len(sys.argv) > 1 else 20
    sys.exit(asyncio.run(main(copies)))
