"""create user_progress

Revision ID: 3c9e1f7a2b40
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3c9e1f7a2b40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "user_progress",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("question_set_id", sa.String(length=64), nullable=False),
        sa.Column("question_id", sa.String(length=64), nullable=False),
        sa.Column("is_correct", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("time_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("record_type", sa.String(length=32), nullable=False),
        sa.Column("last_accessed", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("completed_questions", sa.Integer(), nullable=True),
        sa.Column("correct_answers", sa.Integer(), nullable=True),
        sa.Column("total_questions", sa.Integer(), nullable=True),
        sa.CheckConstraint("time_spent >= 0", name="ck_user_progress_time_spent"),
    )
    op.create_index(
        "ix_user_progress_user_set", "user_progress", ["user_id", "question_set_id"]
    )
    op.create_index(
        "ix_user_progress_dedupe",
        "user_progress",
        ["user_id", "question_set_id", "question_id", "record_type", "last_accessed"],
    )


def downgrade() -> None:
    op.drop_index("ix_user_progress_dedupe", table_name="user_progress")
    op.drop_index("ix_user_progress_user_set", table_name="user_progress")
    op.drop_table("user_progress")
