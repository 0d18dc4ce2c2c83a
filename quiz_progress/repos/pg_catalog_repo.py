"""PostgreSQL implementation of QuestionCatalog."""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quiz_progress.core.errors import ProgressStoreError
from quiz_progress.db.tables import QuestionRow, QuestionSetRow


class PgQuestionCatalog:
    """Satisfies the QuestionCatalog Protocol against the content tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def question_count(self, question_set_id: str) -> int | None:
        counts = await self.question_counts([question_set_id])
        return counts.get(question_set_id)

    async def question_counts(self, question_set_ids: Iterable[str]) -> dict[str, int]:
        ids = list(question_set_ids)
        if not ids:
            return {}
        stmt = (
            select(QuestionSetRow.id, func.count(QuestionRow.id))
            .outerjoin(QuestionRow, QuestionRow.question_set_id == QuestionSetRow.id)
            .where(QuestionSetRow.id.in_(ids))
            .group_by(QuestionSetRow.id)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as exc:
            raise ProgressStoreError("question catalog lookup failed") from exc
        return {set_id: int(count) for set_id, count in rows}

    async def question_types(self, question_ids: Iterable[str]) -> dict[str, str]:
        ids = list(question_ids)
        if not ids:
            return {}
        stmt = select(QuestionRow.id, QuestionRow.question_type).where(
            QuestionRow.id.in_(ids)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as exc:
            raise ProgressStoreError("question catalog lookup failed") from exc
        return {qid: qtype for qid, qtype in rows}
