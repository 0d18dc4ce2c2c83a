"""Assert that bearer tokens never appear in log output.

Beacons may carry their token in the body, and the live endpoint takes
it in the query string; neither must leak into logs.
"""

from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from tests.conftest import SET_ID, auth


def test_beacon_body_token_not_logged(
    client: TestClient, token: str, caplog: pytest.LogCaptureFixture
) -> None:
    body = {
        "userId": "u1",
        "questionSetId": SET_ID,
        "progress": [{"questionId": "q1", "isCorrect": True}],
        "token": token,
    }
    with caplog.at_level(logging.DEBUG):
        client.post("/progress/beacon", json=body)
    assert token not in caplog.text


def test_rejected_beacon_token_not_logged(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    bogus = "not.a-real.token-value"
    body = {"userId": "u1", "questionSetId": SET_ID, "progress": [], "token": bogus}
    with caplog.at_level(logging.DEBUG):
        resp = client.post("/progress/beacon", json=body)
    assert resp.json()["success"] is False
    assert bogus not in caplog.text


def test_update_does_not_log_authorization_header(
    client: TestClient, token: str, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.DEBUG):
        client.post(
            "/progress/update",
            json={"questionSetId": SET_ID, "questionId": "q1", "isCorrect": True},
            headers=auth(token),
        )
    assert token not in caplog.text
