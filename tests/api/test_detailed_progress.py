"""Tests for POST /progress/detailed: the nested-shape path."""

from __future__ import annotations

from fastapi.testclient import TestClient

from quiz_progress.models.progress import RecordType
from tests.conftest import SET_ID, all_rows, auth


def test_detailed_flat_body_creates_row(client: TestClient, token: str) -> None:
    resp = client.post(
        "/progress/detailed",
        json={"questionSetId": SET_ID, "questionId": "q1", "isCorrect": True, "timeSpent": 4},
        headers=auth(token),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["duplicate"] is False
    assert body["progress"]["recordType"] == "detailed_progress"
    assert body["progress"]["questionId"] == "q1"
    assert body["progress"]["userId"] == "u1"


def test_detailed_unwraps_nested_objects(client: TestClient, token: str) -> None:
    payload = {
        "questionSet": {"id": SET_ID},
        "question": {"id": "q3"},
        "answer": {"isCorrect": "true", "time": 9, "selectedOptions": ["b"]},
        "metadata": {"device": "tablet"},
    }
    resp = client.post(
        "/progress/detailed",
        json=payload,
        headers={**auth(token), "User-Agent": "pytest-agent"},
    )
    assert resp.status_code == 201
    (row,) = all_rows()
    assert row.record_type == RecordType.DETAILED_PROGRESS
    assert row.question_set_id == SET_ID
    assert row.question_id == "q3"
    assert row.is_correct is True
    assert row.time_spent == 9
    assert row.metadata["device"] == "tablet"
    assert row.metadata["selectedOptions"] == ["b"]
    assert row.metadata["userAgent"] == "pytest-agent"
    assert row.metadata["source"] == "detailed"


def test_detailed_takes_set_from_question(client: TestClient, token: str) -> None:
    payload = {
        "question": {"id": "q2", "questionSetId": SET_ID},
        "result": True,
    }
    resp = client.post("/progress/detailed", json=payload, headers=auth(token))
    assert resp.status_code == 201
    (row,) = all_rows()
    assert row.question_set_id == SET_ID
    assert row.is_correct is True
    assert row.time_spent == 0


def test_detailed_result_string_is_coerced(client: TestClient, token: str) -> None:
    payload = {"questionSetId": SET_ID, "questionId": "q2", "result": "false"}
    client.post("/progress/detailed", json=payload, headers=auth(token))
    (row,) = all_rows()
    assert row.is_correct is False


def test_detailed_missing_question_is_400(client: TestClient, token: str) -> None:
    resp = client.post(
        "/progress/detailed",
        json={"questionSet": {"id": SET_ID}, "answer": {"isCorrect": True}},
        headers=auth(token),
    )
    assert resp.status_code == 400
    assert "questionId" in resp.json()["message"]


def test_detailed_rows_do_not_count_toward_answer_stats(
    client: TestClient, token: str
) -> None:
    resp = client.post(
        "/progress/detailed",
        json={"questionSetId": SET_ID, "questionId": "q1", "isCorrect": True},
        headers=auth(token),
    )
    assert resp.json()["stats"]["totalAnswers"] == 0


def test_detailed_is_deduped_separately_from_updates(
    client: TestClient, token: str
) -> None:
    payload = {"questionSetId": SET_ID, "questionId": "q1", "isCorrect": True}
    client.post("/progress/update", json=payload, headers=auth(token))
    first = client.post("/progress/detailed", json=payload, headers=auth(token))
    second = client.post("/progress/detailed", json=payload, headers=auth(token))
    assert first.json()["duplicate"] is False
    assert second.json()["duplicate"] is True
    assert second.json()["progress"]["id"] == first.json()["progress"]["id"]
    assert len(all_rows()) == 2
