"""PostgreSQL implementation of ProgressStore."""

from __future__ import annotations

import hashlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import case, delete, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quiz_progress.core.errors import ProgressStoreError
from quiz_progress.db.tables import UserProgressRow
from quiz_progress.models.progress import AnswerTally, ProgressEvent, RecordType
from quiz_progress.repos.progress_repo import SORTABLE_FIELDS, AfterCommitHooks

_SORT_COLUMNS = {name: getattr(UserProgressRow, name) for name in SORTABLE_FIELDS}


def _advisory_key(*parts: str) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    digest = hashlib.blake2b("\x1f".join(parts).encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class PgProgressUnitOfWork(AfterCommitHooks):
    """Satisfies the ProgressUnitOfWork Protocol inside one session transaction."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__()
        self._session = session

    async def lock_key(
        self,
        user_id: str,
        question_set_id: str,
        question_id: str,
        record_type: RecordType,
    ) -> None:
        # Serializes check-then-insert for one dedupe key until commit.
        key = _advisory_key(user_id, question_set_id, question_id, record_type.value)
        await self._session.execute(select(func.pg_advisory_xact_lock(key)))

    async def find_recent(
        self,
        *,
        user_id: str,
        question_set_id: str,
        question_id: str,
        record_type: RecordType,
        since: datetime,
    ) -> ProgressEvent | None:
        stmt = (
            select(UserProgressRow)
            .where(
                UserProgressRow.user_id == user_id,
                UserProgressRow.question_set_id == question_set_id,
                UserProgressRow.question_id == question_id,
                UserProgressRow.record_type == record_type.value,
                UserProgressRow.last_accessed >= since,
            )
            .order_by(UserProgressRow.last_accessed.desc())
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_event(row) if row is not None else None

    async def find_summary(
        self, user_id: str, question_set_id: str
    ) -> ProgressEvent | None:
        stmt = (
            select(UserProgressRow)
            .where(
                UserProgressRow.user_id == user_id,
                UserProgressRow.question_set_id == question_set_id,
                UserProgressRow.record_type == RecordType.SESSION_SUMMARY.value,
            )
            .order_by(UserProgressRow.created_at)
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_event(row) if row is not None else None

    async def get(self, event_id: str) -> ProgressEvent | None:
        row = await self._session.get(UserProgressRow, event_id)
        return _row_to_event(row) if row is not None else None

    async def add(self, event: ProgressEvent) -> None:
        self._session.add(_event_to_row(event))
        await self._session.flush()

    async def replace(self, event: ProgressEvent) -> None:
        await self._session.merge(_event_to_row(event))
        await self._session.flush()

    async def delete(self, event_id: str) -> bool:
        stmt = delete(UserProgressRow).where(UserProgressRow.id == event_id)
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def delete_for_set(self, user_id: str, question_set_id: str) -> int:
        stmt = delete(UserProgressRow).where(
            UserProgressRow.user_id == user_id,
            UserProgressRow.question_set_id == question_set_id,
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    def _tally_columns() -> tuple:
        return (
            func.count(UserProgressRow.id),
            func.count(distinct(UserProgressRow.question_id)),
            func.coalesce(
                func.sum(case((UserProgressRow.is_correct.is_(True), 1), else_=0)), 0
            ),
            func.coalesce(func.sum(UserProgressRow.time_spent), 0),
            func.max(UserProgressRow.last_accessed),
        )

    async def tally(
        self, user_id: str, question_set_id: str | None = None
    ) -> AnswerTally:
        stmt = select(*self._tally_columns()).where(
            UserProgressRow.user_id == user_id,
            UserProgressRow.record_type == RecordType.INDIVIDUAL_ANSWER.value,
        )
        if question_set_id is not None:
            stmt = stmt.where(UserProgressRow.question_set_id == question_set_id)
        total, distinct_questions, correct, time_spent, last = (
            await self._session.execute(stmt)
        ).one()
        return AnswerTally(
            total_answers=int(total),
            completed_questions=int(distinct_questions),
            correct_answers=int(correct),
            total_time_spent=int(time_spent),
            last_activity=last,
        )

    async def tally_by_question_set(self, user_id: str) -> dict[str, AnswerTally]:
        stmt = (
            select(UserProgressRow.question_set_id, *self._tally_columns())
            .where(
                UserProgressRow.user_id == user_id,
                UserProgressRow.record_type == RecordType.INDIVIDUAL_ANSWER.value,
            )
            .group_by(UserProgressRow.question_set_id)
        )
        rows = (await self._session.execute(stmt)).all()
        return {
            set_id: AnswerTally(
                total_answers=int(total),
                completed_questions=int(distinct_questions),
                correct_answers=int(correct),
                total_time_spent=int(time_spent),
                last_activity=last,
            )
            for set_id, total, distinct_questions, correct, time_spent, last in rows
        }

    async def list_answers(self, user_id: str) -> list[ProgressEvent]:
        stmt = select(UserProgressRow).where(
            UserProgressRow.user_id == user_id,
            UserProgressRow.record_type == RecordType.INDIVIDUAL_ANSWER.value,
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_event(r) for r in rows]

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
        conditions = [UserProgressRow.user_id == user_id]
        if question_set_id is not None:
            conditions.append(UserProgressRow.question_set_id == question_set_id)
        if record_type is not None:
            conditions.append(UserProgressRow.record_type == record_type.value)
        if is_correct is not None:
            conditions.append(UserProgressRow.is_correct.is_(is_correct))

        count_stmt = select(func.count(UserProgressRow.id)).where(*conditions)
        total = (await self._session.execute(count_stmt)).scalar_one()

        column = _SORT_COLUMNS.get(sort, UserProgressRow.last_accessed)
        stmt = (
            select(UserProgressRow)
            .where(*conditions)
            .order_by(column.desc() if descending else column.asc(), UserProgressRow.id)
            .offset(offset)
            .limit(limit)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_event(r) for r in rows], int(total)


class PgProgressStore:
    """Satisfies the ProgressStore Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PgProgressUnitOfWork]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    uow = PgProgressUnitOfWork(session)
                    yield uow
        except (SQLAlchemyError, OSError) as exc:
            raise ProgressStoreError("progress store operation failed") from exc
        await uow.run_after_commit()


def _event_to_row(event: ProgressEvent) -> UserProgressRow:
    return UserProgressRow(
        id=event.id,
        user_id=event.user_id,
        question_set_id=event.question_set_id,
        question_id=event.question_id,
        is_correct=event.is_correct,
        time_spent=event.time_spent,
        record_type=event.record_type.value,
        last_accessed=event.last_accessed,
        created_at=event.created_at,
        updated_at=event.updated_at,
        metadata_json=dict(event.metadata),
        completed_questions=event.completed_questions,
        correct_answers=event.correct_answers,
        total_questions=event.total_questions,
    )


def _row_to_event(row: UserProgressRow) -> ProgressEvent:
    return ProgressEvent(
        id=row.id,
        user_id=row.user_id,
        question_set_id=row.question_set_id,
        question_id=row.question_id,
        is_correct=bool(row.is_correct),
        time_spent=row.time_spent or 0,
        record_type=RecordType(row.record_type),
        last_accessed=row.last_accessed,
        created_at=row.created_at,
        updated_at=row.updated_at,
        metadata=dict(row.metadata_json or {}),
        completed_questions=row.completed_questions,
        correct_answers=row.correct_answers,
        total_questions=row.total_questions,
    )
