"""Demo: record answers, beacon a batch, submit a quiz, watch the live feed.

Uses the in-memory backends (no DATABASE_URL / REDIS_URL) and the sample
question set seeded in dev.

Run with:
    python scripts/demo_progress_flow.py
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from quiz_progress.main import app
from quiz_progress.services import token_service

USER_ID = "demo-user"
SET_ID = "sample-set"


def main() -> None:
    client = TestClient(app)
    token = token_service.create_access_token(sub=USER_ID)
    headers = {"Authorization": f"Bearer {token}"}

    with client.websocket_connect(f"/progress/live?token={token}") as ws:
        print(f"0. WS   /progress/live     → {ws.receive_json()}")

        # ── Step 1: one answer ──────────────────────────────────────────
        answer = {"questionSetId": SET_ID, "questionId": "sample-q1",
                  "isCorrect": True, "timeSpent": 12}
        r = client.post("/progress/update", json=answer, headers=headers)
        print(f"1. POST /progress/update   → {r.status_code}  id={r.json()['id']}")
        print(f"   live: {ws.receive_json()['type']}")

        # ── Step 2: same answer again inside the window ─────────────────
        r = client.post("/progress/update", json=answer, headers=headers)
        print(f"2. POST /progress/update   → {r.status_code}  "
              f"duplicate={r.json()['duplicate']}")

        # ── Step 3: page-unload beacon (no auth header) ─────────────────
        beacon = {
            "userId": USER_ID,
            "questionSetId": SET_ID,
            "sessionId": "demo-session",
            "progress": [
                {"questionId": "sample-q2", "isCorrect": False, "timeSpent": 20},
                {"questionId": "sample-q3", "isCorrect": True, "timeSpent": 8},
            ],
        }
        r = client.post("/progress/beacon", json=beacon)
        print(f"3. POST /progress/beacon   → {r.status_code}  {r.json()}")
        print(f"   live: {ws.receive_json()['type']}")

        # ── Step 4: quiz submission ─────────────────────────────────────
        r = client.post(
            "/quiz/submit",
            json={"questionSetId": SET_ID, "completedQuestions": 3,
                  "correctAnswers": 2, "timeSpent": 40},
            headers=headers,
        )
        print(f"4. POST /quiz/submit       → {r.status_code}  id={r.json()['id']}")
        print(f"   live: {ws.receive_json()['type']}")

    # ── Step 5: read back ───────────────────────────────────────────────
    r = client.get(f"/progress/stats/{USER_ID}/{SET_ID}", headers=headers)
    stats = r.json()
    print(
        f"5. GET  /progress/stats    → {r.status_code}  "
        f"completed={stats['completedQuestions']}/{stats['totalQuestions']}  "
        f"accuracy={stats['accuracy']:.1f}%"
    )


if __name__ == "__main__":
    main()
