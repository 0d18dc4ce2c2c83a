"""Request bodies for the ingestion and record-edit endpoints.

Clients send camelCase or snake_case, booleans as bools or "true"/"false"
strings, and times as ints, floats or numeric strings.  The detailed
path nests its fields under ``questionSet``/``question``/``answer``;
``DetailedIn`` flattens that before any field is validated.

Field errors surface as a pydantic ``ValidationError``; the API layer
turns them into ``ProgressValidationError`` (see core/errors.py).
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError


def accepts(name: str, **kwargs: Any) -> Any:
    """Field that reads either the camelCase or the snake_case key and dumps camelCase."""
    camel = to_camel(name)
    return Field(
        validation_alias=AliasChoices(camel, name), serialization_alias=camel, **kwargs
    )


def _missing() -> PydanticCustomError:
    return PydanticCustomError("missing", "Field required")


def coerce_bool(value: Any) -> bool:
    """Bools pass through; "true"/"false" strings (any case) are parsed."""
    if value is None:
        raise _missing()
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "false"):
            return lowered == "true"
    raise ValueError("must be true or false")


def coerce_time_spent(value: Any) -> int:
    """Whole seconds, clamped to >= 0.  Unparseable input is 0."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return 0
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return 0
        return max(0, int(value))
    return 0


def coerce_count(value: Any) -> int | None:
    """Non-negative counter, or None when absent or unparseable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError, OverflowError):
        return None


def clean_id(value: Any, *, required: bool) -> str | None:
    if isinstance(value, bool):
        raise ValueError("must be a string or integer id")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    if value is None or isinstance(value, str):
        if required:
            raise _missing()
        return None
    raise ValueError("must be a string or integer id")


class IngestModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class AnswerIn(IngestModel):
    """One answer: a beacon ``progress`` item or a quiz ``answerDetails`` item."""

    question_id: str = accepts("question_id")
    is_correct: bool = accepts("is_correct")
    time_spent: int = accepts("time_spent", default=0)
    selected_options: Any = accepts("selected_options", default=None)
    correct_options: Any = accepts("correct_options", default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("question_id", mode="before")
    @classmethod
    def _question_id(cls, value: Any) -> str | None:
        return clean_id(value, required=True)

    @field_validator("is_correct", mode="before")
    @classmethod
    def _is_correct(cls, value: Any) -> bool:
        return coerce_bool(value)

    @field_validator("time_spent", mode="before")
    @classmethod
    def _time_spent(cls, value: Any) -> int:
        return coerce_time_spent(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> dict[str, Any]:
        return dict(value) if isinstance(value, Mapping) else {}

    def option_metadata(self) -> dict[str, Any]:
        extra: dict[str, Any] = {}
        if self.selected_options is not None:
            extra["selectedOptions"] = self.selected_options
        if self.correct_options is not None:
            extra["correctOptions"] = self.correct_options
        return extra


class UpdateIn(AnswerIn):
    """POST /progress/update: one answer plus the ids around it."""

    question_set_id: str = accepts("question_set_id")
    user_id: str | None = accepts("user_id", default=None)

    @field_validator("question_set_id", mode="before")
    @classmethod
    def _question_set_id(cls, value: Any) -> str | None:
        return clean_id(value, required=True)

    @field_validator("user_id", mode="before")
    @classmethod
    def _user_id(cls, value: Any) -> str | None:
        return clean_id(value, required=False)


def _first(body: Mapping[str, Any], name: str) -> Any:
    for key in (to_camel(name), name):
        if body.get(key) is not None:
            return body[key]
    return None


def _truthy(value: Any) -> bool:
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return bool(value)


def unwrap_detailed(body: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten the nested detailed-progress shape.

    Precedence: ``questionSet.id`` for the set, then ``question.id`` /
    ``question.questionSetId``, then ``answer.isCorrect`` and
    ``answer.timeSpent`` (or ``answer.time``), then ``result``.  Flat
    fields already present win over nested ones.
    """
    flat = dict(body)

    question_set = body.get("questionSet")
    if isinstance(question_set, Mapping) and _first(flat, "question_set_id") is None:
        flat["questionSetId"] = question_set.get("id")

    question = body.get("question")
    if isinstance(question, Mapping):
        if _first(flat, "question_id") is None:
            flat["questionId"] = question.get("id")
        if _first(flat, "question_set_id") is None:
            flat["questionSetId"] = _first(question, "question_set_id")

    answer = body.get("answer")
    if isinstance(answer, Mapping):
        if _first(flat, "is_correct") is None:
            flat["isCorrect"] = _first(answer, "is_correct")
        if _first(flat, "time_spent") is None:
            time = _first(answer, "time_spent")
            flat["timeSpent"] = time if time is not None else answer.get("time")
        if _first(flat, "selected_options") is None:
            flat["selectedOptions"] = _first(answer, "selected_options")

    result = body.get("result")
    if _first(flat, "is_correct") is None and result is not None:
        flat["isCorrect"] = _truthy(result)

    # Keys set to None above must not shadow the snake_case spelling.
    return {k: v for k, v in flat.items() if v is not None}


class DetailedIn(UpdateIn):
    """POST /progress/detailed: flat or nested answer."""

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            return unwrap_detailed(data)
        return data


class BeaconIn(IngestModel):
    """POST /progress/beacon: a batch of answers flushed on page unload."""

    user_id: str = accepts("user_id")
    question_set_id: str = accepts("question_set_id")
    progress: list[AnswerIn]
    session_id: str | None = accepts("session_id", default=None)
    timestamp: Any = None
    # Beacons cannot set headers, so the bearer token may ride in the body.
    token: str | None = Field(default=None, exclude=True, repr=False)

    @field_validator("user_id", "question_set_id", mode="before")
    @classmethod
    def _required_ids(cls, value: Any) -> str | None:
        return clean_id(value, required=True)

    @field_validator("session_id", mode="before")
    @classmethod
    def _session_id(cls, value: Any) -> str | None:
        return clean_id(value, required=False)

    @field_validator("token", mode="before")
    @classmethod
    def _token(cls, value: Any) -> str | None:
        return value if isinstance(value, str) and value else None


class QuizSubmitIn(IngestModel):
    """POST /quiz/submit.  Counters default to what ``answerDetails`` implies."""

    question_set_id: str = accepts("question_set_id")
    user_id: str | None = accepts("user_id", default=None)
    session_id: str | None = accepts("session_id", default=None)
    completed_questions: int | None = accepts("completed_questions", default=None)
    correct_answers: int | None = accepts("correct_answers", default=None)
    time_spent: int | None = accepts("time_spent", default=None)
    answer_details: list[AnswerIn] = accepts("answer_details", default_factory=list)

    @field_validator("question_set_id", mode="before")
    @classmethod
    def _question_set_id(cls, value: Any) -> str | None:
        return clean_id(value, required=True)

    @field_validator("user_id", "session_id", mode="before")
    @classmethod
    def _optional_ids(cls, value: Any) -> str | None:
        return clean_id(value, required=False)

    @field_validator("completed_questions", "correct_answers", mode="before")
    @classmethod
    def _counts(cls, value: Any) -> int | None:
        return coerce_count(value)

    @field_validator("time_spent", mode="before")
    @classmethod
    def _time_spent(cls, value: Any) -> int | None:
        return None if value is None else coerce_time_spent(value)

    @field_validator("answer_details", mode="before")
    @classmethod
    def _answer_details(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def completed(self) -> int:
        if self.completed_questions is not None:
            return self.completed_questions
        return len({a.question_id for a in self.answer_details})

    @property
    def correct(self) -> int:
        if self.correct_answers is not None:
            return self.correct_answers
        return sum(1 for a in self.answer_details if a.is_correct)

    @property
    def total_time(self) -> int:
        if self.time_spent is not None:
            return self.time_spent
        return sum(a.time_spent for a in self.answer_details)


class RecordEditIn(IngestModel):
    """PATCH /progress/records/{user_id}/{progress_id}.  Absent fields stay as stored."""

    is_correct: bool | None = accepts("is_correct", default=None)
    time_spent: int | None = accepts("time_spent", default=None)
    metadata: dict[str, Any] | None = None
    last_accessed: datetime | None = accepts("last_accessed", default=None)

    @field_validator("is_correct", mode="before")
    @classmethod
    def _is_correct(cls, value: Any) -> bool | None:
        return None if value is None else coerce_bool(value)

    @field_validator("time_spent", mode="before")
    @classmethod
    def _time_spent(cls, value: Any) -> int | None:
        return None if value is None else coerce_time_spent(value)

    @field_validator("last_accessed")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
