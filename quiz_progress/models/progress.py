from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4


class RecordType(str, enum.Enum):
    """Which ingestion path produced a row; drives aggregation treatment."""

    INDIVIDUAL_ANSWER = "individual_answer"
    DETAILED_PROGRESS = "detailed_progress"
    SESSION_SUMMARY = "session_summary"
    AGGREGATED = "aggregated"


def new_event_id() -> str:
    return str(uuid4())


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """One persisted row of the progress event log."""

    id: str
    user_id: str
    question_set_id: str
    question_id: str
    is_correct: bool
    time_spent: int
    record_type: RecordType
    last_accessed: datetime
    created_at: datetime
    updated_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
    completed_questions: int | None = None
    correct_answers: int | None = None
    total_questions: int | None = None

    @staticmethod
    def new(
        *,
        event_id: str | None = None,
        user_id: str,
        question_set_id: str,
        question_id: str | None,
        is_correct: bool,
        time_spent: int,
        record_type: RecordType,
        now: datetime,
        metadata: dict[str, Any] | None = None,
        completed_questions: int | None = None,
        correct_answers: int | None = None,
        total_questions: int | None = None,
    ) -> ProgressEvent:
        event_id = event_id or new_event_id()
        return ProgressEvent(
            id=event_id,
            user_id=user_id,
            question_set_id=question_set_id,
            # Summary rows are not tied to one question; the column is
            # NOT NULL, so they reuse their own id as a placeholder.
            question_id=question_id if question_id is not None else event_id,
            is_correct=is_correct,
            time_spent=max(0, time_spent),
            record_type=record_type,
            last_accessed=now,
            created_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
            completed_questions=completed_questions,
            correct_answers=correct_answers,
            total_questions=total_questions,
        )


@dataclass(frozen=True, slots=True)
class AnswerTally:
    """Raw counts over a set of individual_answer rows.

    Produced by the store (SQL aggregates or an in-memory scan) and turned
    into ``ProgressStats`` by the aggregator.
    """

    total_answers: int = 0
    completed_questions: int = 0  # distinct question ids
    correct_answers: int = 0
    total_time_spent: int = 0
    last_activity: datetime | None = None


@dataclass(frozen=True, slots=True)
class ProgressStats:
    user_id: str
    question_set_id: str | None
    total_questions: int
    completed_questions: int
    correct_answers: int
    total_answers: int
    total_time_spent: int
    average_time_spent: float
    accuracy: float
    progress_percentage: float
    last_activity: datetime | None


@dataclass(frozen=True, slots=True)
class TypeStats:
    """Per-question-type rollup row."""

    question_type: str
    total_answers: int
    completed_questions: int
    correct_answers: int
    total_time_spent: int
    average_time_spent: float
    accuracy: float


@dataclass(frozen=True, slots=True)
class EventPage:
    items: list[ProgressEvent]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return -(-self.total // self.limit)
