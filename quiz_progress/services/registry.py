"""Module-level service singletons.

Backends are picked from configuration the same way db/engine.py and
db/redis.py do it: PostgreSQL when DATABASE_URL is set, otherwise the
in-memory store and catalog.
"""

from __future__ import annotations

from datetime import timedelta

from quiz_progress.core.config import SETTINGS
from quiz_progress.db.engine import async_session_factory
from quiz_progress.repos.catalog_repo import (
    InMemoryQuestionCatalog,
    QuestionCatalog,
    seed_sample_question_set,
)
from quiz_progress.repos.pg_catalog_repo import PgQuestionCatalog
from quiz_progress.repos.pg_progress_repo import PgProgressStore
from quiz_progress.repos.progress_repo import InMemoryProgressStore, ProgressStore
from quiz_progress.services.aggregator import ProgressAggregator
from quiz_progress.services.fanout import progress_fanout
from quiz_progress.services.ingestion import IngestionGateway
from quiz_progress.services.stats_cache import stats_cache

if async_session_factory is not None:
    progress_store: ProgressStore = PgProgressStore(async_session_factory)
    question_catalog: QuestionCatalog = PgQuestionCatalog(async_session_factory)
else:
    progress_store = InMemoryProgressStore()
    question_catalog = InMemoryQuestionCatalog()
    if SETTINGS.is_dev:
        seed_sample_question_set(question_catalog)

aggregator = ProgressAggregator(
    progress_store,
    question_catalog,
    stats_cache,
    cache_ttl_seconds=SETTINGS.stats_cache_ttl_seconds,
)

gateway = IngestionGateway(
    progress_store,
    question_catalog,
    aggregator,
    progress_fanout,
    stats_cache,
    dedupe_window=timedelta(seconds=SETTINGS.dedupe_window_seconds),
)
