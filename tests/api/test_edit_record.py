"""Tests for editing a single stored record in place."""

from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import SET_ID, all_rows, auth


def _answer(client: TestClient, token: str, question_id: str, **extra) -> str:
    resp = client.post(
        "/progress/update",
        json={"questionSetId": SET_ID, "questionId": question_id, "isCorrect": False,
              "timeSpent": 10, **extra},
        headers=auth(token),
    )
    return resp.json()["id"]


def test_edit_record_returns_row_and_refreshed_stats(
    client: TestClient, token: str
) -> None:
    record = _answer(client, token, "q1")
    _answer(client, token, "q2")

    resp = client.patch(
        f"/progress/records/u1/{record}",
        json={"isCorrect": True, "timeSpent": 25, "metadata": {"note": "regraded"}},
        headers=auth(token),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["progress"]["id"] == record
    assert body["progress"]["isCorrect"] is True
    assert body["progress"]["timeSpent"] == 25
    assert body["progress"]["metadata"] == {"note": "regraded"}
    assert body["stats"]["correctAnswers"] == 1
    assert body["stats"]["totalTimeSpent"] == 35

    (row,) = [r for r in all_rows() if r.id == record]
    assert row.is_correct is True
    assert row.time_spent == 25


def test_edit_leaves_absent_fields_alone(client: TestClient, token: str) -> None:
    record = _answer(client, token, "q1", isCorrect=True)
    resp = client.patch(
        f"/progress/records/u1/{record}", json={"timeSpent": -8}, headers=auth(token)
    )
    progress = resp.json()["progress"]
    assert progress["timeSpent"] == 0
    assert progress["isCorrect"] is True
    assert progress["questionId"] == "q1"


def test_edit_last_accessed(client: TestClient, token: str) -> None:
    record = _answer(client, token, "q1")
    resp = client.patch(
        f"/progress/records/u1/{record}",
        json={"lastAccessed": "2024-01-02T03:04:05Z"},
        headers=auth(token),
    )
    assert resp.status_code == 200
    assert resp.json()["progress"]["lastAccessed"].startswith("2024-01-02T03:04:05")


def test_edit_refreshes_cached_stats(client: TestClient, token: str) -> None:
    record = _answer(client, token, "q1")
    before = client.get(f"/progress/stats/u1/{SET_ID}", headers=auth(token)).json()
    client.patch(
        f"/progress/records/u1/{record}", json={"isCorrect": True}, headers=auth(token)
    )
    after = client.get(f"/progress/stats/u1/{SET_ID}", headers=auth(token)).json()
    assert before["correctAnswers"] == 0
    assert after["correctAnswers"] == 1


def test_edit_unknown_record_is_404(client: TestClient, token: str) -> None:
    resp = client.patch(
        "/progress/records/u1/does-not-exist", json={"isCorrect": True},
        headers=auth(token),
    )
    assert resp.status_code == 404


def test_edit_other_users_record_is_403(client: TestClient, token: str) -> None:
    resp = client.patch(
        "/progress/records/u2/anything", json={"isCorrect": True}, headers=auth(token)
    )
    assert resp.status_code == 403


def test_edit_requires_token(client: TestClient) -> None:
    resp = client.patch("/progress/records/u1/anything", json={"isCorrect": True})
    assert resp.status_code == 401


def test_admin_can_edit_any_record(
    client: TestClient, token: str, admin_token: str
) -> None:
    record = _answer(client, token, "q1")
    resp = client.patch(
        f"/progress/records/u1/{record}", json={"isCorrect": True},
        headers=auth(admin_token),
    )
    assert resp.status_code == 200
    assert resp.json()["progress"]["isCorrect"] is True


def test_edit_with_bad_flag_is_400(client: TestClient, token: str) -> None:
    record = _answer(client, token, "q1")
    resp = client.patch(
        f"/progress/records/u1/{record}", json={"isCorrect": "maybe"},
        headers=auth(token),
    )
    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "message": "Invalid parameters: isCorrect",
    }
    (row,) = all_rows()
    assert row.is_correct is False
