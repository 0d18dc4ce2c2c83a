"""SQLAlchemy table definitions.

``user_progress`` is owned and migrated by this service.  ``question_sets``
and ``questions`` belong to the content service; they are mapped here
read-only so the catalog can count questions and look up question types.
Repos convert rows to the frozen dataclasses in quiz_progress.models.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from quiz_progress.db.engine import Base


class UserProgressRow(Base):
    __tablename__ = "user_progress"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    question_set_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # Holds the row's own id on session_summary rows (NOT NULL placeholder).
    question_id: Mapped[str] = mapped_column(String(64), nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    time_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    record_type: Mapped[str] = mapped_column(
        String(32), nullable=False
    )  # individual_answer|detailed_progress|session_summary|aggregated
    last_accessed: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    completed_questions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    correct_answers: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_questions: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_user_progress_user_set", "user_id", "question_set_id"),
        Index(
            "ix_user_progress_dedupe",
            "user_id",
            "question_set_id",
            "question_id",
            "record_type",
            "last_accessed",
        ),
    )


# --- Reference catalog (read-only) ---


class QuestionSetRow(Base):
    __tablename__ = "question_sets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")


class QuestionRow(Base):
    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    question_set_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("question_sets.id"), nullable=False
    )
    question_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default="single"
    )  # single|multiple|judgment|...
