"""Question catalog lookups.

The catalog (question sets and their questions) is owned by the content
service.  Progress only needs two facts from it: how many questions a set
has, and each question's type for the per-type rollup.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable


@runtime_checkable
class QuestionCatalog(Protocol):
    async def question_count(self, question_set_id: str) -> int | None:
        """Number of questions in the set, or None if the set does not exist."""
        ...

    async def question_counts(self, question_set_ids: Iterable[str]) -> dict[str, int]:
        """Counts for the known sets among ``question_set_ids``; unknown ids are omitted."""
        ...

    async def question_types(self, question_ids: Iterable[str]) -> dict[str, str]:
        """Type per known question id; unknown ids are omitted."""
        ...


class InMemoryQuestionCatalog:
    def __init__(self) -> None:
        self._sets: dict[str, list[str]] = {}
        self._types: dict[str, str] = {}

    def add_question_set(
        self, question_set_id: str, questions: dict[str, str] | None = None
    ) -> None:
        """Register a set with ``{question_id: question_type}``."""
        questions = questions or {}
        self._sets[question_set_id] = list(questions)
        self._types.update(questions)

    def clear(self) -> None:
        self._sets.clear()
        self._types.clear()

    async def question_count(self, question_set_id: str) -> int | None:
        questions = self._sets.get(question_set_id)
        return len(questions) if questions is not None else None

    async def question_counts(self, question_set_ids: Iterable[str]) -> dict[str, int]:
        return {
            set_id: len(self._sets[set_id])
            for set_id in question_set_ids
            if set_id in self._sets
        }

    async def question_types(self, question_ids: Iterable[str]) -> dict[str, str]:
        return {qid: self._types[qid] for qid in question_ids if qid in self._types}


def seed_sample_question_set(catalog: InMemoryQuestionCatalog) -> None:
    """Seed a sample question set for development."""
    catalog.add_question_set(
        "sample-set",
        {
            "sample-q1": "single",
            "sample-q2": "multiple",
            "sample-q3": "judgment",
        },
    )
