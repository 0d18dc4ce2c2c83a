"""Tests for the stats, summary and records read endpoints."""

from __future__ import annotations

from fastapi.testclient import TestClient

from quiz_progress.services.stats_cache import stats_cache, stats_key
from tests.conftest import OTHER_SET_ID, SET_ID, auth, mint_token


def _answer(client: TestClient, token: str, question_id: str, correct: bool,
            time_spent: int, set_id: str = SET_ID):
    resp = client.post(
        "/progress/update",
        json={
            "questionSetId": set_id,
            "questionId": question_id,
            "isCorrect": correct,
            "timeSpent": time_spent,
        },
        headers=auth(token),
    )
    assert resp.status_code == 200
    return resp.json()


def test_stats_for_set_follow_the_formulas(client: TestClient, token: str) -> None:
    _answer(client, token, "q1", True, 10)
    _answer(client, token, "q2", False, 20)
    _answer(client, token, "q3", True, 30)

    resp = client.get(f"/progress/stats/u1/{SET_ID}", headers=auth(token))
    assert resp.status_code == 200
    stats = resp.json()
    assert stats["totalAnswers"] == 3
    assert stats["completedQuestions"] == 3
    assert stats["correctAnswers"] == 2
    assert stats["totalTimeSpent"] == 60
    assert stats["averageTimeSpent"] == 20.0
    assert stats["accuracy"] == 2 / 3 * 100
    assert stats["progressPercentage"] == 60.0
    assert stats["lastActivity"] is not None


def test_stats_with_no_answers_are_zero(client: TestClient, token: str) -> None:
    stats = client.get(f"/progress/stats/u1/{SET_ID}", headers=auth(token)).json()
    assert stats["totalAnswers"] == 0
    assert stats["accuracy"] == 0
    assert stats["averageTimeSpent"] == 0
    assert stats["progressPercentage"] == 0
    assert stats["lastActivity"] is None
    assert stats["totalQuestions"] == 5


def test_stats_unknown_set_is_404(client: TestClient, token: str) -> None:
    resp = client.get("/progress/stats/u1/nope", headers=auth(token))
    assert resp.status_code == 404
    assert resp.json()["success"] is False


def test_all_sets_stats(client: TestClient, token: str) -> None:
    _answer(client, token, "q1", True, 10)
    _answer(client, token, "r1", False, 5, set_id=OTHER_SET_ID)

    stats = client.get("/progress/stats/u1", headers=auth(token)).json()
    assert stats["questionSetId"] is None
    assert stats["totalAnswers"] == 2
    assert stats["correctAnswers"] == 1
    assert stats["totalQuestions"] == 7
    assert stats["totalTimeSpent"] == 15


def test_stats_of_other_user_is_403(client: TestClient, token: str) -> None:
    resp = client.get(f"/progress/stats/u2/{SET_ID}", headers=auth(token))
    assert resp.status_code == 403
    assert resp.json()["success"] is False


def test_admin_reads_any_users_stats(client: TestClient, admin_token: str) -> None:
    resp = client.get(f"/progress/stats/u2/{SET_ID}", headers=auth(admin_token))
    assert resp.status_code == 200


# ---- cache ----


def test_stats_are_cached_and_invalidated_on_write(
    client: TestClient, token: str
) -> None:
    _answer(client, token, "q1", True, 10)
    client.get(f"/progress/stats/u1/{SET_ID}", headers=auth(token))
    client.get("/progress/stats/u1", headers=auth(token))
    assert stats_key("u1", SET_ID) in stats_cache._store  # type: ignore[attr-defined]
    assert stats_key("u1") in stats_cache._store  # type: ignore[attr-defined]

    _answer(client, token, "q2", True, 10)
    assert stats_key("u1", SET_ID) not in stats_cache._store  # type: ignore[attr-defined]
    assert stats_key("u1") not in stats_cache._store  # type: ignore[attr-defined]

    stats = client.get(f"/progress/stats/u1/{SET_ID}", headers=auth(token)).json()
    assert stats["completedQuestions"] == 2


def test_cache_is_per_user(client: TestClient, token: str) -> None:
    other = mint_token(username="u2")
    _answer(client, other, "q1", True, 10)
    client.get(f"/progress/stats/u2/{SET_ID}", headers=auth(other))

    _answer(client, token, "q1", True, 10)
    assert stats_key("u2", SET_ID) in stats_cache._store  # type: ignore[attr-defined]


# ---- summary ----


def test_summary_rolls_up_by_set_and_type(client: TestClient, token: str) -> None:
    _answer(client, token, "q1", True, 10)   # single
    _answer(client, token, "q2", False, 20)  # single
    _answer(client, token, "q3", True, 30)   # multiple
    _answer(client, token, "r2", True, 5, set_id=OTHER_SET_ID)  # multiple

    resp = client.get("/progress/summary/u1", headers=auth(token))
    assert resp.status_code == 200
    body = resp.json()

    assert body["overall"]["totalAnswers"] == 4
    by_set = {s["questionSetId"]: s for s in body["bySet"]}
    assert by_set[SET_ID]["completedQuestions"] == 3
    assert by_set[OTHER_SET_ID]["completedQuestions"] == 1
    assert by_set[OTHER_SET_ID]["progressPercentage"] == 50.0

    by_type = {t["questionType"]: t for t in body["byType"]}
    assert set(by_type) == {"single", "multiple"}
    assert by_type["single"]["totalAnswers"] == 2
    assert by_type["single"]["accuracy"] == 50.0
    assert by_type["multiple"]["correctAnswers"] == 2
    assert by_type["multiple"]["averageTimeSpent"] == 17.5


def test_summary_skips_summary_rows_in_type_rollup(
    client: TestClient, token: str
) -> None:
    client.post(
        "/quiz/submit",
        json={"questionSetId": SET_ID, "completedQuestions": 3, "correctAnswers": 2},
        headers=auth(token),
    )
    body = client.get("/progress/summary/u1", headers=auth(token)).json()
    assert body["byType"] == []
    assert body["bySet"] == []


def test_summary_of_other_user_is_403(client: TestClient, token: str) -> None:
    resp = client.get("/progress/summary/u2", headers=auth(token))
    assert resp.status_code == 403


# ---- records ----


def test_records_are_paginated_and_filtered(client: TestClient, token: str) -> None:
    _answer(client, token, "q1", True, 10)
    _answer(client, token, "q2", False, 30)
    _answer(client, token, "q3", True, 20)
    _answer(client, token, "r1", True, 5, set_id=OTHER_SET_ID)

    resp = client.get(
        "/progress/records/u1",
        params={"questionSetId": SET_ID, "sort": "timeSpent", "order": "asc", "limit": 2},
        headers=auth(token),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 3
    assert body["totalPages"] == 2
    assert body["page"] == 1
    assert [r["timeSpent"] for r in body["items"]] == [10, 20]

    page2 = client.get(
        "/progress/records/u1",
        params={"questionSetId": SET_ID, "sort": "timeSpent", "order": "asc",
                "limit": 2, "page": 2},
        headers=auth(token),
    ).json()
    assert [r["timeSpent"] for r in page2["items"]] == [30]

    wrong = client.get(
        "/progress/records/u1", params={"isCorrect": "false"}, headers=auth(token)
    ).json()
    assert [r["questionId"] for r in wrong["items"]] == ["q2"]


def test_records_filter_by_record_type(client: TestClient, token: str) -> None:
    _answer(client, token, "q1", True, 10)
    client.post(
        "/quiz/submit",
        json={"questionSetId": SET_ID, "completedQuestions": 1, "correctAnswers": 1},
        headers=auth(token),
    )
    body = client.get(
        "/progress/records/u1",
        params={"recordType": "session_summary"},
        headers=auth(token),
    ).json()
    assert body["total"] == 1
    assert body["items"][0]["recordType"] == "session_summary"
    assert body["items"][0]["completedQuestions"] == 1


def test_records_reject_unknown_sort(client: TestClient, token: str) -> None:
    resp = client.get(
        "/progress/records/u1", params={"sort": "isCorrect; drop"}, headers=auth(token)
    )
    assert resp.status_code == 422


def test_records_of_other_user_is_403(client: TestClient, token: str) -> None:
    resp = client.get("/progress/records/u2", headers=auth(token))
    assert resp.status_code == 403
