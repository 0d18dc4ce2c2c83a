"""Table-driven ownership/admin checks across every per-user endpoint.

Each row: method, path, acting user, role, expected status.  Paths all
target user ``u1``; ``u1`` acting on its own data is allowed, anyone else
needs the admin role.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tests.conftest import SET_ID, auth, mint_token

_OWNER = ("u1", "user")
_STRANGER = ("u2", "user")
_ADMIN = ("boss", "admin")

_CASES = [
    ("GET", "/progress/stats/u1", _OWNER, 200),
    ("GET", "/progress/stats/u1", _STRANGER, 403),
    ("GET", "/progress/stats/u1", _ADMIN, 200),
    ("GET", "/progress/stats/u1", None, 401),
    ("GET", f"/progress/stats/u1/{SET_ID}", _OWNER, 200),
    ("GET", f"/progress/stats/u1/{SET_ID}", _STRANGER, 403),
    ("GET", f"/progress/stats/u1/{SET_ID}", _ADMIN, 200),
    ("GET", "/progress/summary/u1", _OWNER, 200),
    ("GET", "/progress/summary/u1", _STRANGER, 403),
    ("GET", "/progress/summary/u1", _ADMIN, 200),
    ("GET", "/progress/records/u1", _OWNER, 200),
    ("GET", "/progress/records/u1", _STRANGER, 403),
    ("GET", "/progress/records/u1", None, 401),
    ("DELETE", f"/progress/reset/u1/{SET_ID}", _OWNER, 200),
    ("DELETE", f"/progress/reset/u1/{SET_ID}", _STRANGER, 403),
    ("DELETE", f"/progress/reset/u1/{SET_ID}", _ADMIN, 200),
    ("DELETE", "/progress/u1/missing", _OWNER, 404),
    ("DELETE", "/progress/u1/missing", _STRANGER, 403),
    ("DELETE", "/progress/u1/missing", None, 401),
]


def _case_id(case: tuple) -> str:
    method, path, actor, expected = case
    label = f"{actor[0]}:{actor[1]}" if actor else "anon"
    return f"{method} {path} [{label}] -> {expected}"


@pytest.mark.parametrize(
    "method,path,actor,expected",
    _CASES,
    ids=[_case_id(c) for c in _CASES],
)
def test_access(
    client: TestClient,
    method: str,
    path: str,
    actor: tuple[str, str] | None,
    expected: int,
) -> None:
    headers = auth(mint_token(username=actor[0], roles=[actor[1]])) if actor else {}
    resp = client.request(method, path, headers=headers)
    assert resp.status_code == expected, (
        f"{method} {path} actor={actor}: expected {expected}, got {resp.status_code}"
    )


# ---- writing on behalf of another user ----

_ANSWER = {"questionSetId": SET_ID, "questionId": "q1", "isCorrect": True, "userId": "u1"}


@pytest.mark.parametrize(
    "path,body",
    [
        ("/progress/update", _ANSWER),
        ("/progress/detailed", _ANSWER),
        ("/quiz/submit", {"questionSetId": SET_ID, "userId": "u1"}),
    ],
)
def test_write_for_other_user(client: TestClient, path: str, body: dict) -> None:
    stranger = auth(mint_token(username="u2"))
    assert client.post(path, json=body, headers=stranger).status_code == 403

    admin = auth(mint_token(username="boss", roles=["admin"]))
    assert client.post(path, json=body, headers=admin).status_code in (200, 201)
