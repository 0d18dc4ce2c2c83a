"""Tests for POST /quiz/submit."""

from __future__ import annotations

from fastapi.testclient import TestClient

from quiz_progress.models.progress import RecordType
from tests.conftest import SET_ID, all_rows, auth

SUBMISSION = {
    "questionSetId": SET_ID,
    "completedQuestions": 4,
    "correctAnswers": 3,
    "timeSpent": 120,
}


def _summaries():
    return [r for r in all_rows() if r.record_type == RecordType.SESSION_SUMMARY]


def test_quiz_submit_requires_auth(client: TestClient) -> None:
    resp = client.post("/quiz/submit", json=SUBMISSION)
    assert resp.status_code == 401


def test_quiz_submit_creates_summary(client: TestClient, token: str) -> None:
    resp = client.post("/quiz/submit", json=SUBMISSION, headers=auth(token))
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["questionSetId"] == SET_ID
    assert body["timestamp"]

    (summary,) = _summaries()
    assert body["id"] == summary.id
    assert summary.completed_questions == 4
    assert summary.correct_answers == 3
    assert summary.time_spent == 120
    assert summary.total_questions == 5


def test_quiz_resubmission_is_idempotent(client: TestClient, token: str) -> None:
    first = client.post("/quiz/submit", json=SUBMISSION, headers=auth(token))
    second = client.post("/quiz/submit", json=SUBMISSION, headers=auth(token))
    assert first.json()["id"] == second.json()["id"]

    (summary,) = _summaries()
    assert summary.completed_questions == 4
    assert summary.correct_answers == 3
    assert summary.time_spent == 120


def test_quiz_summary_keeps_maximum_counts(client: TestClient, token: str) -> None:
    client.post("/quiz/submit", json=SUBMISSION, headers=auth(token))
    lower = {**SUBMISSION, "completedQuestions": 2, "correctAnswers": 5, "timeSpent": 30}
    client.post("/quiz/submit", json=lower, headers=auth(token))

    (summary,) = _summaries()
    assert summary.completed_questions == 4
    assert summary.correct_answers == 5
    assert summary.time_spent == 120


def test_quiz_answer_details_fan_out_under_summary(
    client: TestClient, token: str
) -> None:
    payload = {
        **SUBMISSION,
        "answerDetails": [
            {"questionId": "q1", "isCorrect": True, "timeSpent": 40},
            {"questionId": "q2", "isCorrect": "false", "timeSpent": 80},
        ],
    }
    resp = client.post("/quiz/submit", json=payload, headers=auth(token))
    body = resp.json()
    assert body["answersRecorded"] == 2
    assert body["stats"]["totalAnswers"] == 2
    assert body["stats"]["correctAnswers"] == 1

    answers = [r for r in all_rows() if r.record_type == RecordType.INDIVIDUAL_ANSWER]
    assert {a.metadata["summaryId"] for a in answers} == {body["id"]}


def test_quiz_counters_default_from_answer_details(
    client: TestClient, token: str
) -> None:
    payload = {
        "questionSetId": SET_ID,
        "answer_details": [
            {"question_id": "q1", "is_correct": True, "time_spent": 10},
            {"question_id": "q2", "is_correct": True, "time_spent": 15},
            {"question_id": "q3", "is_correct": False, "time_spent": 5},
        ],
    }
    client.post("/quiz/submit", json=payload, headers=auth(token))
    (summary,) = _summaries()
    assert summary.completed_questions == 3
    assert summary.correct_answers == 2
    assert summary.time_spent == 30


def test_quiz_bad_answer_detail_is_400(client: TestClient, token: str) -> None:
    payload = {**SUBMISSION, "answerDetails": [{"isCorrect": True}]}
    resp = client.post("/quiz/submit", json=payload, headers=auth(token))
    assert resp.status_code == 400
    assert "answerDetails[0].questionId" in resp.json()["message"]
    assert all_rows() == []


def test_quiz_missing_set_is_400(client: TestClient, token: str) -> None:
    resp = client.post("/quiz/submit", json={"completedQuestions": 1}, headers=auth(token))
    assert resp.status_code == 400


def test_quiz_for_other_user_is_403(client: TestClient, token: str) -> None:
    resp = client.post(
        "/quiz/submit", json={**SUBMISSION, "userId": "u2"}, headers=auth(token)
    )
    assert resp.status_code == 403
