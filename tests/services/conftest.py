"""Fresh, isolated service graphs for unit tests below the API layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from quiz_progress.models.principal import Principal
from quiz_progress.repos.catalog_repo import InMemoryQuestionCatalog
from quiz_progress.repos.progress_repo import InMemoryProgressStore
from quiz_progress.services.aggregator import ProgressAggregator
from quiz_progress.services.ingestion import IngestionGateway
from quiz_progress.services.stats_cache import InMemoryStatsCache

START = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingFanout:
    """Stands in for ProgressFanout; keeps every publish call."""

    def __init__(self) -> None:
        self.published: list[dict[str, Any]] = []

    async def publish(self, event_type: str, **kwargs: Any) -> None:
        self.published.append({"type": event_type, **kwargs})


@dataclass
class Services:
    store: InMemoryProgressStore
    catalog: InMemoryQuestionCatalog
    cache: InMemoryStatsCache
    fanout: RecordingFanout
    clock: FakeClock
    aggregator: ProgressAggregator
    gateway: IngestionGateway
    user: Principal = field(default_factory=lambda: Principal("u1", frozenset({"user"})))
    admin: Principal = field(
        default_factory=lambda: Principal("boss", frozenset({"admin"}))
    )


@pytest.fixture
def services() -> Services:
    store = InMemoryProgressStore()
    catalog = InMemoryQuestionCatalog()
    catalog.add_question_set(
        "s1", {"q1": "single", "q2": "single", "q3": "multiple", "q4": "judgment"}
    )
    cache = InMemoryStatsCache()
    publisher = RecordingFanout()
    clock = FakeClock()
    aggregator = ProgressAggregator(store, catalog, cache, cache_ttl_seconds=60)
    gateway = IngestionGateway(
        store,
        catalog,
        aggregator,
        publisher,  # type: ignore[arg-type]
        cache,
        dedupe_window=timedelta(seconds=10),
        clock=clock,
    )
    return Services(store, catalog, cache, publisher, clock, aggregator, gateway)
