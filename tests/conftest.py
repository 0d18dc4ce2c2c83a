from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from quiz_progress.main import app
from quiz_progress.services import registry, token_service
from quiz_progress.services.fanout import live_broker
from quiz_progress.services.stats_cache import stats_cache

# Ensure repo root is on sys.path so `import quiz_progress` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Question set "s1" with five questions of mixed type; "s2" with two.
SET_ID = "s1"
SET_QUESTIONS = {
    "q1": "single",
    "q2": "single",
    "q3": "multiple",
    "q4": "judgment",
    "q5": "judgment",
}
OTHER_SET_ID = "s2"
OTHER_SET_QUESTIONS = {"r1": "single", "r2": "multiple"}


@pytest.fixture(autouse=True)
def reset_progress_store() -> None:
    """Drop all progress rows between tests."""
    if hasattr(registry.progress_store, "reset"):
        registry.progress_store.reset()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_catalog() -> None:
    """Reseed the in-memory catalog with the two test sets."""
    catalog = registry.question_catalog
    if hasattr(catalog, "clear"):
        catalog.clear()  # type: ignore[union-attr]
        catalog.add_question_set(SET_ID, SET_QUESTIONS)  # type: ignore[union-attr]
        catalog.add_question_set(OTHER_SET_ID, OTHER_SET_QUESTIONS)  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache between tests."""
    if hasattr(stats_cache, "clear"):
        stats_cache.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_live_broker() -> None:
    """Drop live subscribers between tests."""
    if hasattr(live_broker, "clear"):
        live_broker.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_gateway_clock() -> Iterator[None]:
    """Undo any clock a test installed on the shared gateway."""
    clock = registry.gateway.clock
    yield
    registry.gateway.clock = clock


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def run(coro):
    """Drive an async service call from a sync test."""
    return asyncio.run(coro)


def all_rows():
    return registry.progress_store.all_rows()  # type: ignore[union-attr]


@pytest.fixture
def token() -> str:
    """Token for user u1 with the default role."""
    return mint_token(username="u1")


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(username="test-admin", roles=["admin"])
