"""Ingestion gateway: the single write path for progress events.

Four entry shapes (sync update, detailed, beacon, quiz submission) plus
edit/delete/reset all follow the same sequence:

  validated request model (pydantic, before any transaction)
  -> catalog check      (unknown question set is NotFound)
  -> transaction:
       per-key lock, dedupe check, writes, fresh stats (reads own writes)
       register after-commit hooks: invalidate stats cache, publish fanout
  -> commit -> hooks run -> return

A write that lands within the dedupe window of an identical key is
skipped and reported back as ``duplicate=True`` with the existing row's
id.  Duplicates change nothing, so they trigger no fanout.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from quiz_progress.core.errors import (
    ProgressNotFoundError,
    ProgressPermissionError,
)
from quiz_progress.core.metrics import DUPLICATES_SUPPRESSED, EVENTS_INGESTED
from quiz_progress.models.principal import Principal
from quiz_progress.models.progress import (
    ProgressEvent,
    ProgressStats,
    RecordType,
    new_event_id,
)
from quiz_progress.models.requests import (
    AnswerIn,
    BeaconIn,
    DetailedIn,
    QuizSubmitIn,
    RecordEditIn,
    UpdateIn,
)
from quiz_progress.repos.catalog_repo import QuestionCatalog
from quiz_progress.repos.progress_repo import ProgressStore, ProgressUnitOfWork
from quiz_progress.services import fanout
from quiz_progress.services.aggregator import ProgressAggregator, ensure_can_act_for
from quiz_progress.services.stats_cache import StatsCache

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class IngestResult:
    """Outcome of a single-answer write."""

    event: ProgressEvent
    duplicate: bool
    stats: ProgressStats


@dataclass(frozen=True, slots=True)
class BatchResult:
    """Outcome of a beacon sync or quiz submission."""

    summary: ProgressEvent
    answers_written: int
    duplicates: int
    stats: ProgressStats


@dataclass(frozen=True, slots=True)
class EditResult:
    event: ProgressEvent
    stats: ProgressStats


class IngestionGateway:
    def __init__(
        self,
        store: ProgressStore,
        catalog: QuestionCatalog,
        aggregator: ProgressAggregator,
        publisher: fanout.ProgressFanout,
        cache: StatsCache,
        *,
        dedupe_window: timedelta,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._aggregator = aggregator
        self._fanout = publisher
        self._cache = cache
        self.dedupe_window = dedupe_window
        self.clock = clock

    # ------------------------------------------------------------------
    # Entry paths
    # ------------------------------------------------------------------

    async def ingest_update(self, principal: Principal, data: UpdateIn) -> IngestResult:
        """Synchronous per-answer update: one ``individual_answer`` row."""
        user_id = self._acting_user(principal, data.user_id)
        return await self._ingest_single(
            user_id,
            data.question_set_id,
            data,
            record_type=RecordType.INDIVIDUAL_ANSWER,
            event_type=fanout.PROGRESS_UPDATED,
            source="update",
            metadata={**data.option_metadata(), "source": "update"},
        )

    async def ingest_detailed(
        self,
        principal: Principal,
        data: DetailedIn,
        *,
        user_agent: str | None = None,
    ) -> IngestResult:
        """Detailed progress: nested shape unwrapped to one ``detailed_progress`` row."""
        user_id = self._acting_user(principal, data.user_id)
        metadata = {**data.metadata, **data.option_metadata(), "source": "detailed"}
        if user_agent:
            metadata["userAgent"] = user_agent
        return await self._ingest_single(
            user_id,
            data.question_set_id,
            data,
            record_type=RecordType.DETAILED_PROGRESS,
            event_type=fanout.DETAILED_PROGRESS_CREATED,
            source="detailed",
            metadata=metadata,
        )

    async def ingest_beacon(
        self, principal: Principal | None, data: BeaconIn
    ) -> BatchResult:
        """Page-unload batch: one answer row per item plus a summary upsert.

        ``principal`` is None for unauthenticated beacons; the body's
        userId is then trusted.  Summary counts take the max of old and
        new values.  Summary time grows by the time of the items actually
        stored, so a retried beacon whose items are all duplicates leaves
        it unchanged.
        """
        if principal is not None:
            ensure_can_act_for(principal, data.user_id)
        total_questions = await self._require_question_set(data.question_set_id)
        now = self.clock()

        detail = {
            "sessionId": data.session_id,
            "timestamp": data.timestamp,
            "progress": [
                item.model_dump(mode="json", by_alias=True, exclude_none=True)
                for item in data.progress
            ],
        }

        written: Counter[RecordType] = Counter()
        duplicates = 0
        stored_time = 0
        async with self._store.transaction() as uow:
            existing = await self._lock_summary(uow, data.user_id, data.question_set_id)
            summary_id = existing.id if existing is not None else new_event_id()
            for item in data.progress:
                _, duplicate = await self._insert_deduped(
                    uow,
                    data.user_id,
                    data.question_set_id,
                    item,
                    record_type=RecordType.INDIVIDUAL_ANSWER,
                    now=now,
                    metadata={
                        **item.option_metadata(),
                        "source": "beacon",
                        "sessionId": data.session_id,
                        "summaryId": summary_id,
                    },
                )
                if duplicate:
                    duplicates += 1
                else:
                    written[RecordType.INDIVIDUAL_ANSWER] += 1
                    stored_time += item.time_spent
            summary = await self._upsert_summary(
                uow,
                existing,
                summary_id=summary_id,
                user_id=data.user_id,
                question_set_id=data.question_set_id,
                now=now,
                completed=len({item.question_id for item in data.progress}),
                correct=sum(1 for item in data.progress if item.is_correct),
                time_spent=stored_time,
                total_questions=total_questions,
                accumulate_time=True,
                metadata={"source": "beacon", "sessionId": data.session_id},
                progress_detail=detail,
            )
            written[RecordType.SESSION_SUMMARY] += 1
            stats = await self._aggregator.compute_set_stats(
                uow, data.user_id, data.question_set_id, total_questions
            )
            self._after_commit(
                uow,
                fanout.BEACON_SYNC,
                user_id=data.user_id,
                question_set_id=data.question_set_id,
                source="beacon",
                stats=stats,
                written=written,
                progress_id=summary.id,
            )

        logger.info(
            "Beacon sync user=%s set=%s items=%d duplicates=%d",
            data.user_id,
            data.question_set_id,
            len(data.progress),
            duplicates,
            extra={"user_id": data.user_id, "question_set_id": data.question_set_id},
        )
        return BatchResult(
            summary=summary,
            answers_written=written[RecordType.INDIVIDUAL_ANSWER],
            duplicates=duplicates,
            stats=stats,
        )

    async def ingest_quiz_submission(
        self, principal: Principal, data: QuizSubmitIn
    ) -> BatchResult:
        """Full quiz summary.  Resubmitting the same payload changes nothing."""
        user_id = self._acting_user(principal, data.user_id)
        total_questions = await self._require_question_set(data.question_set_id)
        now = self.clock()

        written: Counter[RecordType] = Counter()
        duplicates = 0
        async with self._store.transaction() as uow:
            existing = await self._lock_summary(uow, user_id, data.question_set_id)
            summary_id = existing.id if existing is not None else new_event_id()
            for answer in data.answer_details:
                _, duplicate = await self._insert_deduped(
                    uow,
                    user_id,
                    data.question_set_id,
                    answer,
                    record_type=RecordType.INDIVIDUAL_ANSWER,
                    now=now,
                    metadata={
                        **answer.option_metadata(),
                        "source": "quiz",
                        "summaryId": summary_id,
                    },
                )
                if duplicate:
                    duplicates += 1
                else:
                    written[RecordType.INDIVIDUAL_ANSWER] += 1
            summary = await self._upsert_summary(
                uow,
                existing,
                summary_id=summary_id,
                user_id=user_id,
                question_set_id=data.question_set_id,
                now=now,
                completed=data.completed,
                correct=data.correct,
                time_spent=data.total_time,
                total_questions=total_questions,
                accumulate_time=False,
                metadata={"source": "quiz", "sessionId": data.session_id},
            )
            written[RecordType.SESSION_SUMMARY] += 1
            stats = await self._aggregator.compute_set_stats(
                uow, user_id, data.question_set_id, total_questions
            )
            self._after_commit(
                uow,
                fanout.QUIZ_SUBMITTED,
                user_id=user_id,
                question_set_id=data.question_set_id,
                source="quiz",
                stats=stats,
                written=written,
                progress_id=summary.id,
            )

        logger.info(
            "Quiz submitted user=%s set=%s completed=%d correct=%d",
            user_id,
            data.question_set_id,
            data.completed,
            data.correct,
            extra={"user_id": user_id, "question_set_id": data.question_set_id},
        )
        return BatchResult(
            summary=summary,
            answers_written=written[RecordType.INDIVIDUAL_ANSWER],
            duplicates=duplicates,
            stats=stats,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def update_event(
        self,
        principal: Principal,
        user_id: str,
        progress_id: str,
        data: RecordEditIn,
    ) -> EditResult:
        """Edit one stored row in place and return the re-aggregated stats.

        Only the fields present in ``data`` change; ``metadata`` replaces
        the stored value wholesale.
        """
        ensure_can_act_for(principal, user_id)
        now = self.clock()
        async with self._store.transaction() as uow:
            event = await uow.get(progress_id)
            if event is None or event.user_id != user_id:
                raise ProgressNotFoundError(f"Progress record {progress_id} not found")
            changes: dict[str, Any] = {"updated_at": now}
            if data.is_correct is not None:
                changes["is_correct"] = data.is_correct
            if data.time_spent is not None:
                changes["time_spent"] = data.time_spent
            if data.metadata is not None:
                changes["metadata"] = dict(data.metadata)
            if data.last_accessed is not None:
                changes["last_accessed"] = data.last_accessed
            updated = replace(event, **changes)
            await uow.replace(updated)
            stats = await self._aggregator.compute_set_stats(
                uow, user_id, event.question_set_id
            )
            self._after_commit(
                uow,
                fanout.PROGRESS_UPDATED,
                user_id=user_id,
                question_set_id=event.question_set_id,
                source="edit",
                stats=stats,
                question_id=updated.question_id,
                progress_id=updated.id,
                is_correct=updated.is_correct,
            )

        logger.info(
            "Edited progress record %s for user=%s fields=%s",
            progress_id,
            user_id,
            ",".join(sorted(data.model_fields_set)),
            extra={"user_id": user_id, "question_set_id": event.question_set_id},
        )
        return EditResult(event=updated, stats=stats)

    async def delete_event(
        self, principal: Principal, user_id: str, progress_id: str
    ) -> ProgressStats:
        """Delete one row and return the re-aggregated stats for its set."""
        ensure_can_act_for(principal, user_id)
        async with self._store.transaction() as uow:
            event = await uow.get(progress_id)
            if event is None or event.user_id != user_id:
                raise ProgressNotFoundError(f"Progress record {progress_id} not found")
            await uow.delete(progress_id)
            stats = await self._aggregator.compute_set_stats(
                uow, user_id, event.question_set_id
            )
            self._after_commit(
                uow,
                fanout.PROGRESS_DELETED,
                user_id=user_id,
                question_set_id=event.question_set_id,
                source="delete",
                stats=stats,
                progress_id=progress_id,
            )

        logger.info(
            "Deleted progress record %s for user=%s", progress_id, user_id,
            extra={"user_id": user_id, "question_set_id": event.question_set_id},
        )
        return stats

    async def reset_question_set(
        self, principal: Principal, user_id: str, question_set_id: str
    ) -> int:
        """Delete every row the user has for one set.  Returns the count."""
        ensure_can_act_for(principal, user_id)
        async with self._store.transaction() as uow:
            deleted = await uow.delete_for_set(user_id, question_set_id)
            stats = await self._aggregator.compute_set_stats(
                uow, user_id, question_set_id
            )
            self._after_commit(
                uow,
                fanout.PROGRESS_RESET,
                user_id=user_id,
                question_set_id=question_set_id,
                source="reset",
                stats=stats,
                deleted_count=deleted,
            )

        logger.info(
            "Reset %d progress records for user=%s set=%s",
            deleted,
            user_id,
            question_set_id,
            extra={"user_id": user_id, "question_set_id": question_set_id},
        )
        return deleted

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _acting_user(self, principal: Principal, requested: str | None) -> str:
        if requested is None or requested == principal.user_id:
            return principal.user_id
        if not principal.is_admin():
            logger.warning(
                "Access denied: user=%s writing progress for user=%s",
                principal.user_id,
                requested,
            )
            raise ProgressPermissionError("Not allowed to record progress for another user")
        return requested

    async def _require_question_set(self, question_set_id: str) -> int:
        total = await self._catalog.question_count(question_set_id)
        if total is None:
            raise ProgressNotFoundError(f"Question set {question_set_id} not found")
        return total

    async def _ingest_single(
        self,
        user_id: str,
        question_set_id: str,
        answer: AnswerIn,
        *,
        record_type: RecordType,
        event_type: str,
        source: str,
        metadata: dict[str, Any],
    ) -> IngestResult:
        total_questions = await self._require_question_set(question_set_id)
        now = self.clock()

        async with self._store.transaction() as uow:
            event, duplicate = await self._insert_deduped(
                uow,
                user_id,
                question_set_id,
                answer,
                record_type=record_type,
                now=now,
                metadata=metadata,
            )
            stats = await self._aggregator.compute_set_stats(
                uow, user_id, question_set_id, total_questions
            )
            if not duplicate:
                self._after_commit(
                    uow,
                    event_type,
                    user_id=user_id,
                    question_set_id=question_set_id,
                    source=source,
                    stats=stats,
                    written=Counter({record_type: 1}),
                    question_id=answer.question_id,
                    progress_id=event.id,
                )

        return IngestResult(event=event, duplicate=duplicate, stats=stats)

    async def _insert_deduped(
        self,
        uow: ProgressUnitOfWork,
        user_id: str,
        question_set_id: str,
        answer: AnswerIn,
        *,
        record_type: RecordType,
        now: datetime,
        metadata: dict[str, Any],
    ) -> tuple[ProgressEvent, bool]:
        await uow.lock_key(user_id, question_set_id, answer.question_id, record_type)
        existing = await uow.find_recent(
            user_id=user_id,
            question_set_id=question_set_id,
            question_id=answer.question_id,
            record_type=record_type,
            since=now - self.dedupe_window,
        )
        if existing is not None:
            DUPLICATES_SUPPRESSED.labels(record_type=record_type.value).inc()
            logger.info(
                "Duplicate %s suppressed user=%s set=%s question=%s existing=%s",
                record_type.value,
                user_id,
                question_set_id,
                answer.question_id,
                existing.id,
                extra={
                    "user_id": user_id,
                    "question_set_id": question_set_id,
                    "record_type": record_type.value,
                },
            )
            return existing, True

        event = ProgressEvent.new(
            user_id=user_id,
            question_set_id=question_set_id,
            question_id=answer.question_id,
            is_correct=answer.is_correct,
            time_spent=answer.time_spent,
            record_type=record_type,
            now=now,
            metadata=metadata,
        )
        await uow.add(event)
        return event, False

    async def _lock_summary(
        self, uow: ProgressUnitOfWork, user_id: str, question_set_id: str
    ) -> ProgressEvent | None:
        # Placeholder question id: one lock per (user, set) summary.
        await uow.lock_key(user_id, question_set_id, "", RecordType.SESSION_SUMMARY)
        return await uow.find_summary(user_id, question_set_id)

    async def _upsert_summary(
        self,
        uow: ProgressUnitOfWork,
        existing: ProgressEvent | None,
        *,
        summary_id: str,
        user_id: str,
        question_set_id: str,
        now: datetime,
        completed: int,
        correct: int,
        time_spent: int,
        total_questions: int,
        accumulate_time: bool,
        metadata: dict[str, Any],
        progress_detail: dict[str, Any] | None = None,
    ) -> ProgressEvent:
        """Write the (user, set) summary.  Caller holds the lock from ``_lock_summary``."""
        if existing is None:
            meta = dict(metadata)
            if progress_detail is not None:
                meta["progressDetails"] = [progress_detail]
            summary = ProgressEvent.new(
                event_id=summary_id,
                user_id=user_id,
                question_set_id=question_set_id,
                question_id=None,
                is_correct=False,
                time_spent=time_spent,
                record_type=RecordType.SESSION_SUMMARY,
                now=now,
                metadata=meta,
                completed_questions=completed,
                correct_answers=correct,
                total_questions=total_questions,
            )
            await uow.add(summary)
            return summary

        meta = {**existing.metadata, **metadata}
        if progress_detail is not None:
            meta["progressDetails"] = [
                *existing.metadata.get("progressDetails", []),
                progress_detail,
            ]
        summary = replace(
            existing,
            completed_questions=max(existing.completed_questions or 0, completed),
            correct_answers=max(existing.correct_answers or 0, correct),
            time_spent=(
                existing.time_spent + time_spent
                if accumulate_time
                else max(existing.time_spent, time_spent)
            ),
            total_questions=total_questions,
            last_accessed=now,
            updated_at=now,
            metadata=meta,
        )
        await uow.replace(summary)
        return summary

    def _after_commit(
        self,
        uow: ProgressUnitOfWork,
        event_type: str,
        *,
        user_id: str,
        question_set_id: str,
        source: str,
        stats: ProgressStats,
        written: Counter[RecordType] | None = None,
        **extra: Any,
    ) -> None:
        """Register metrics, cache invalidation and fanout for after commit."""

        async def _count() -> None:
            for record_type, n in (written or {}).items():
                EVENTS_INGESTED.labels(record_type=record_type.value).inc(n)

        async def _invalidate() -> None:
            await self._cache.invalidate_user(user_id)

        async def _publish() -> None:
            await self._fanout.publish(
                event_type,
                user_id=user_id,
                question_set_id=question_set_id,
                source=source,
                stats=stats,
                **extra,
            )

        uow.on_commit(_count)
        uow.on_commit(_invalidate)
        uow.on_commit(_publish)
