"""Progress aggregation: stats, rollups, and the paginated record listing.

Formulas (over ``individual_answer`` rows only):

    completedQuestions = COUNT(DISTINCT question_id)
    correctAnswers     = COUNT(rows where is_correct)
    totalAnswers       = COUNT(rows)
    totalTimeSpent     = SUM(time_spent)
    accuracy           = correctAnswers / totalAnswers * 100     (0 if none)
    averageTimeSpent   = totalTimeSpent / completedQuestions     (0 if none)
    progressPercentage = completedQuestions / totalQuestions * 100 (0 if empty set)

``compute_*`` methods take an open unit of work so the ingestion gateway
can read its own uncommitted writes; the public read methods open their
own transaction and go through the stats cache.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass

from quiz_progress.core.errors import ProgressNotFoundError, ProgressPermissionError
from quiz_progress.core.metrics import STATS_CACHE
from quiz_progress.models.principal import Principal
from quiz_progress.models.progress import (
    AnswerTally,
    EventPage,
    ProgressStats,
    RecordType,
    TypeStats,
)
from quiz_progress.repos.catalog_repo import QuestionCatalog
from quiz_progress.repos.progress_repo import ProgressStore, ProgressUnitOfWork
from quiz_progress.services.stats_cache import (
    StatsCache,
    decode_stats,
    encode_stats,
    stats_key,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def build_stats(
    user_id: str,
    question_set_id: str | None,
    tally: AnswerTally,
    total_questions: int,
) -> ProgressStats:
    completed = tally.completed_questions
    return ProgressStats(
        user_id=user_id,
        question_set_id=question_set_id,
        total_questions=total_questions,
        completed_questions=completed,
        correct_answers=tally.correct_answers,
        total_answers=tally.total_answers,
        total_time_spent=tally.total_time_spent,
        average_time_spent=tally.total_time_spent / completed if completed else 0.0,
        accuracy=(
            tally.correct_answers / tally.total_answers * 100
            if tally.total_answers
            else 0.0
        ),
        progress_percentage=(
            completed / total_questions * 100 if total_questions else 0.0
        ),
        last_activity=tally.last_activity,
    )


@dataclass(frozen=True, slots=True)
class UserSummary:
    overall: ProgressStats
    by_set: list[ProgressStats]
    by_type: list[TypeStats]


def ensure_can_act_for(principal: Principal, user_id: str) -> None:
    if not principal.can_act_for(user_id):
        logger.warning(
            "Access denied: user=%s acting on user=%s", principal.user_id, user_id
        )
        raise ProgressPermissionError("Not allowed to access another user's progress")


class ProgressAggregator:
    def __init__(
        self,
        store: ProgressStore,
        catalog: QuestionCatalog,
        cache: StatsCache,
        *,
        cache_ttl_seconds: int,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._cache = cache
        self._cache_ttl = cache_ttl_seconds

    # -- inside an existing transaction ------------------------------------

    async def compute_set_stats(
        self,
        uow: ProgressUnitOfWork,
        user_id: str,
        question_set_id: str,
        total_questions: int | None = None,
    ) -> ProgressStats:
        if total_questions is None:
            total_questions = await self._catalog.question_count(question_set_id) or 0
        tally = await uow.tally(user_id, question_set_id)
        return build_stats(user_id, question_set_id, tally, total_questions)

    async def compute_user_stats(
        self, uow: ProgressUnitOfWork, user_id: str
    ) -> ProgressStats:
        by_set = await uow.tally_by_question_set(user_id)
        counts = await self._catalog.question_counts(by_set)
        tally = await uow.tally(user_id)
        return build_stats(user_id, None, tally, sum(counts.values()))

    # -- public reads --------------------------------------------------------

    async def get_stats(
        self,
        principal: Principal,
        user_id: str,
        question_set_id: str | None = None,
    ) -> ProgressStats:
        """Stats for one set, or across every set when ``question_set_id`` is None."""
        ensure_can_act_for(principal, user_id)

        total_questions: int | None = None
        if question_set_id is not None:
            total_questions = await self._catalog.question_count(question_set_id)
            if total_questions is None:
                raise ProgressNotFoundError(f"Question set {question_set_id} not found")

        key = stats_key(user_id, question_set_id)
        # Read before computing: a write that lands mid-read bumps it.
        generation = await self._cache.generation(user_id)
        cached = await self._cache.get(key) if generation is not None else None
        if cached is not None:
            stats, cached_generation = decode_stats(cached)
            if cached_generation == generation:
                STATS_CACHE.labels(result="hit").inc()
                return stats
        STATS_CACHE.labels(result="miss").inc()

        async with self._store.transaction() as uow:
            if question_set_id is None:
                stats = await self.compute_user_stats(uow, user_id)
            else:
                stats = await self.compute_set_stats(
                    uow, user_id, question_set_id, total_questions
                )

        if generation is not None:
            await self._cache.set(key, encode_stats(stats, generation), self._cache_ttl)
        return stats

    async def summarize(self, principal: Principal, user_id: str) -> UserSummary:
        """Overall stats plus per-set and per-question-type rollups."""
        ensure_can_act_for(principal, user_id)
        async with self._store.transaction() as uow:
            tallies = await uow.tally_by_question_set(user_id)
            answers = await uow.list_answers(user_id)
            overall_tally = await uow.tally(user_id)

        tallies = {set_id: t for set_id, t in tallies.items() if set_id}
        counts = await self._catalog.question_counts(tallies)
        by_set = [
            build_stats(user_id, set_id, tally, counts.get(set_id, 0))
            for set_id, tally in sorted(tallies.items())
        ]

        types = await self._catalog.question_types({a.question_id for a in answers})
        grouped: dict[str, list] = defaultdict(list)
        for a in answers:
            qtype = types.get(a.question_id)
            if qtype is None:
                continue
            grouped[qtype].append(a)
        by_type = []
        for qtype, rows in sorted(grouped.items()):
            completed = len({r.question_id for r in rows})
            correct = sum(1 for r in rows if r.is_correct)
            time_spent = sum(r.time_spent for r in rows)
            by_type.append(
                TypeStats(
                    question_type=qtype,
                    total_answers=len(rows),
                    completed_questions=completed,
                    correct_answers=correct,
                    total_time_spent=time_spent,
                    average_time_spent=time_spent / completed if completed else 0.0,
                    accuracy=correct / len(rows) * 100,
                )
            )

        overall = build_stats(user_id, None, overall_tally, sum(counts.values()))
        return UserSummary(overall=overall, by_set=by_set, by_type=by_type)

    async def list_records(
        self,
        principal: Principal,
        user_id: str,
        *,
        question_set_id: str | None = None,
        record_type: RecordType | None = None,
        is_correct: bool | None = None,
        sort: str = "last_accessed",
        descending: bool = True,
        page: int = 1,
        limit: int = 10,
    ) -> EventPage:
        ensure_can_act_for(principal, user_id)
        page = max(1, page)
        limit = min(max(1, limit), MAX_PAGE_SIZE)
        async with self._store.transaction() as uow:
            items, total = await uow.list_events(
                user_id,
                question_set_id=question_set_id,
                record_type=record_type,
                is_correct=is_correct,
                sort=sort,
                descending=descending,
                offset=(page - 1) * limit,
                limit=limit,
            )
        return EventPage(items=items, total=total, page=page, limit=limit)
