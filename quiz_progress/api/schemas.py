"""Response models shared by the progress and quiz routers.

Field names are snake_case in Python and serialized camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from quiz_progress.models.progress import ProgressEvent, ProgressStats, TypeStats


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StatsOut(CamelModel):
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

    @classmethod
    def from_stats(cls, stats: ProgressStats) -> StatsOut:
        return cls(
            user_id=stats.user_id,
            question_set_id=stats.question_set_id,
            total_questions=stats.total_questions,
            completed_questions=stats.completed_questions,
            correct_answers=stats.correct_answers,
            total_answers=stats.total_answers,
            total_time_spent=stats.total_time_spent,
            average_time_spent=stats.average_time_spent,
            accuracy=stats.accuracy,
            progress_percentage=stats.progress_percentage,
            last_activity=stats.last_activity,
        )


class TypeStatsOut(CamelModel):
    question_type: str
    total_answers: int
    completed_questions: int
    correct_answers: int
    total_time_spent: int
    average_time_spent: float
    accuracy: float

    @classmethod
    def from_stats(cls, stats: TypeStats) -> TypeStatsOut:
        return cls(
            question_type=stats.question_type,
            total_answers=stats.total_answers,
            completed_questions=stats.completed_questions,
            correct_answers=stats.correct_answers,
            total_time_spent=stats.total_time_spent,
            average_time_spent=stats.average_time_spent,
            accuracy=stats.accuracy,
        )


class ProgressRecordOut(CamelModel):
    id: str
    user_id: str
    question_set_id: str
    question_id: str
    is_correct: bool
    time_spent: int
    record_type: str
    last_accessed: datetime
    created_at: datetime
    updated_at: datetime
    metadata: dict[str, Any]
    completed_questions: int | None = None
    correct_answers: int | None = None
    total_questions: int | None = None

    @classmethod
    def from_event(cls, event: ProgressEvent) -> ProgressRecordOut:
        return cls(
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
            metadata=event.metadata,
            completed_questions=event.completed_questions,
            correct_answers=event.correct_answers,
            total_questions=event.total_questions,
        )
