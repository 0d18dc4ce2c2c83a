#!/usr/bin/env python3
"""Load test: fire identical answers concurrently and check dedupe holds.

RUN:  python scripts/load_test_dedupe.py

Sends CONCURRENCY identical beacon syncs for one answer at the same time
and prints how the server answered.  The beacon path needs no token, so
this works against any dev instance.  If ACCESS_TOKEN is set (a token
for USER_ID the server accepts), the script also reads the records back
and reports how many answer rows were actually stored: it should be 1.

Prerequisites:
  - The API must be running: uvicorn quiz_progress.main:app --port 8000
  - APP_ENV=dev, so the "sample-set" question set is seeded

For real load testing, use tools like locust, k6, or wrk.
"""

from __future__ import annotations

import asyncio
import os
import time
import uuid

import httpx

BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000")
USER_ID = os.environ.get("USER_ID", f"load-{uuid.uuid4().hex[:8]}")
SET_ID = "sample-set"
CONCURRENCY = 50


async def _fire(client: httpx.AsyncClient, body: dict) -> bool:
    resp = await client.post("/progress/beacon", json=body)
    return resp.status_code == 200 and resp.json().get("success") is True


async def main() -> None:
    print("Dedupe Load Test")
    print("=" * 50)
    print(f"Target: {BASE_URL}/progress/beacon")
    print(f"User: {USER_ID}  concurrent requests: {CONCURRENCY}")
    print()

    body = {
        "userId": USER_ID,
        "questionSetId": SET_ID,
        "sessionId": "load-test",
        "progress": [{"questionId": "sample-q1", "isCorrect": True, "timeSpent": 3}],
    }

    async with httpx.AsyncClient(base_url=BASE_URL, timeout=10) as client:
        start = time.monotonic()
        results = await asyncio.gather(*(_fire(client, body) for _ in range(CONCURRENCY)))
        elapsed = time.monotonic() - start

        ok = sum(results)
        print(f"Results after {CONCURRENCY} requests ({elapsed:.2f}s):")
        print("─" * 40)
        print(f"  success=true : {ok:>4}")
        print(f"  success=false: {CONCURRENCY - ok:>4}")
        print()

        token = os.environ.get("ACCESS_TOKEN")
        if not token:
            print("Set ACCESS_TOKEN to verify the stored row count.")
            return

        resp = await client.get(
            f"/progress/records/{USER_ID}",
            params={"recordType": "individual_answer", "questionSetId": SET_ID},
            headers={"Authorization": f"Bearer {token}"},
        )
        resp.raise_for_status()
        stored = resp.json()["total"]
        print(f"Stored individual_answer rows: {stored}")
        if stored == 1:
            print("Dedupe held under concurrency.")
        else:
            print("WARNING: more than one row stored inside the dedupe window.")


if __name__ == "__main__":
    asyncio.run(main())
