"""Progress event store: protocol and in-memory implementation.

All reads and writes go through ``store.transaction()``, an async context
manager yielding a unit of work.  Leaving the block normally commits;
an exception rolls back every write made inside it.  Callbacks registered
with ``uow.on_commit`` run only after a successful commit, which is how
cache invalidation and live-update fanout stay tied to durable writes.

The in-memory store (used when DATABASE_URL is unset) serializes
transactions with an asyncio.Lock and works on a copy of the row map that
is swapped in on commit, so a failure halfway through a batch leaves no
trace.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import Protocol, runtime_checkable

from quiz_progress.models.progress import (
    AnswerTally,
    ProgressEvent,
    RecordType,
)

logger = logging.getLogger(__name__)

AfterCommit = Callable[[], Awaitable[None]]

SORTABLE_FIELDS = ("last_accessed", "created_at", "updated_at", "time_spent")


@runtime_checkable
class ProgressUnitOfWork(Protocol):
    def on_commit(self, callback: AfterCommit) -> None: ...

    async def lock_key(
        self,
        user_id: str,
        question_set_id: str,
        question_id: str,
        record_type: RecordType,
    ) -> None: ...

    async def find_recent(
        self,
        *,
        user_id: str,
        question_set_id: str,
        question_id: str,
        record_type: RecordType,
        since: datetime,
    ) -> ProgressEvent | None: ...

    async def find_summary(
        self, user_id: str, question_set_id: str
    ) -> ProgressEvent | None: ...

    async def get(self, event_id: str) -> ProgressEvent | None: ...
    async def add(self, event: ProgressEvent) -> None: ...
    async def replace(self, event: ProgressEvent) -> None: ...
    async def delete(self, event_id: str) -> bool: ...
    async def delete_for_set(self, user_id: str, question_set_id: str) -> int: ...

    async def tally(
        self, user_id: str, question_set_id: str | None = None
    ) -> AnswerTally: ...

    async def tally_by_question_set(self, user_id: str) -> dict[str, AnswerTally]: ...
    async def list_answers(self, user_id: str) -> list[ProgressEvent]: ...

    async def list_events(
        self,
        user_id: str,
        *,
        question_set_id: str | None = None,
        record_type: RecordType | None = None,
        is_correct: bool | None = None,
        sort: str = "last_accessed",
        descending: bool = True,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[ProgressEvent], int]: ...


class ProgressStore(Protocol):
    def transaction(self) -> AbstractAsyncContextManager[ProgressUnitOfWork]: ...


class AfterCommitHooks:
    """Collects after-commit callbacks and runs them once the store commits.

    Each hook runs in isolation: the write is already durable, so a
    failing hook is logged and never undoes or blocks the others.
    """

    def __init__(self) -> None:
        self._callbacks: list[AfterCommit] = []

    def on_commit(self, callback: AfterCommit) -> None:
        self._callbacks.append(callback)

    async def run_after_commit(self) -> None:
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                await callback()
            except Exception:
                logger.exception("After-commit hook %r failed", callback)


def _tally(rows: list[ProgressEvent]) -> AnswerTally:
    if not rows:
        return AnswerTally()
    return AnswerTally(
        total_answers=len(rows),
        completed_questions=len({r.question_id for r in rows}),
        correct_answers=sum(1 for r in rows if r.is_correct),
        total_time_spent=sum(r.time_spent for r in rows),
        last_activity=max(r.last_accessed for r in rows),
    )


class InMemoryProgressUnitOfWork(AfterCommitHooks):
    def __init__(self, rows: dict[str, ProgressEvent]) -> None:
        super().__init__()
        self._rows = rows

    async def lock_key(
        self,
        user_id: str,
        question_set_id: str,
        question_id: str,
        record_type: RecordType,
    ) -> None:
        # Transactions already run one at a time.
        return None

    async def find_recent(
        self,
        *,
        user_id: str,
        question_set_id: str,
        question_id: str,
        record_type: RecordType,
        since: datetime,
    ) -> ProgressEvent | None:
        matches = [
            r
            for r in self._rows.values()
            if r.user_id == user_id
            and r.question_set_id == question_set_id
            and r.question_id == question_id
            and r.record_type == record_type
            and r.last_accessed >= since
        ]
        return max(matches, key=lambda r: r.last_accessed, default=None)

    async def find_summary(
        self, user_id: str, question_set_id: str
    ) -> ProgressEvent | None:
        for r in self._rows.values():
            if (
                r.user_id == user_id
                and r.question_set_id == question_set_id
                and r.record_type == RecordType.SESSION_SUMMARY
            ):
                return r
        return None

    async def get(self, event_id: str) -> ProgressEvent | None:
        return self._rows.get(event_id)

    async def add(self, event: ProgressEvent) -> None:
        if event.id in self._rows:
            raise ValueError(f"progress row {event.id} already exists")
        self._rows[event.id] = event

    async def replace(self, event: ProgressEvent) -> None:
        if event.id not in self._rows:
            raise KeyError(f"progress row {event.id} not found")
        self._rows[event.id] = event

    async def delete(self, event_id: str) -> bool:
        return self._rows.pop(event_id, None) is not None

    async def delete_for_set(self, user_id: str, question_set_id: str) -> int:
        doomed = [
            r.id
            for r in self._rows.values()
            if r.user_id == user_id and r.question_set_id == question_set_id
        ]
        for event_id in doomed:
            del self._rows[event_id]
        return len(doomed)

    def _answers(
        self, user_id: str, question_set_id: str | None = None
    ) -> list[ProgressEvent]:
        return [
            r
            for r in self._rows.values()
            if r.user_id == user_id
            and r.record_type == RecordType.INDIVIDUAL_ANSWER
            and (question_set_id is None or r.question_set_id == question_set_id)
        ]

    async def tally(
        self, user_id: str, question_set_id: str | None = None
    ) -> AnswerTally:
        return _tally(self._answers(user_id, question_set_id))

    async def tally_by_question_set(self, user_id: str) -> dict[str, AnswerTally]:
        grouped: dict[str, list[ProgressEvent]] = defaultdict(list)
        for r in self._answers(user_id):
            grouped[r.question_set_id].append(r)
        return {set_id: _tally(rows) for set_id, rows in grouped.items()}

    async def list_answers(self, user_id: str) -> list[ProgressEvent]:
        return self._answers(user_id)

    async def list_events(
        self,
        user_id: str,
        *,
        question_set_id: str | None = None,
        record_type: RecordType | None = None,
        is_correct: bool | None = None,
        sort: str = "last_accessed",
        descending: bool = True,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[ProgressEvent], int]:
        if sort not in SORTABLE_FIELDS:
            sort = "last_accessed"
        rows = [
            r
            for r in self._rows.values()
            if r.user_id == user_id
            and (question_set_id is None or r.question_set_id == question_set_id)
            and (record_type is None or r.record_type == record_type)
            and (is_correct is None or r.is_correct == is_correct)
        ]
        rows.sort(key=lambda r: getattr(r, sort), reverse=descending)
        return rows[offset : offset + limit], len(rows)


class InMemoryProgressStore:
    """Snapshot-and-swap transactional store for dev and tests."""

    def __init__(self) -> None:
        self._rows: dict[str, ProgressEvent] = {}
        self._lock = asyncio.Lock()

    def reset(self) -> None:
        """Drop all rows.  Also rebuilds the lock so it binds to a fresh loop."""
        self._rows = {}
        self._lock = asyncio.Lock()

    def all_rows(self) -> list[ProgressEvent]:
        return list(self._rows.values())

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryProgressUnitOfWork]:
        async with self._lock:
            working = dict(self._rows)
            uow = InMemoryProgressUnitOfWork(working)
            yield uow
            # Only reached when the block exited cleanly.
            self._rows = working
        await uow.run_after_commit()
