"""create progress tables

Revision ID: 3b1f9c2d7a10
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b1f9c2d7a10"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "student_progress",
        sa.Column("student_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "unlocked_videos",
            postgresql.ARRAY(postgresql.UUID(as_uuid=True)),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "completed_reading_materials",
            postgresql.ARRAY(postgresql.UUID(as_uuid=True)),
            nullable=False,
            server_default="{}",
        ),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("student_id", "course_id"),
    )
    op.create_index(
        "ix_student_progress_course", "student_progress", ["course_id"]
    )

    op.create_table(
        "unit_progress",
        sa.Column("student_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("unit_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column(
            "status", sa.String(length=16), nullable=False, server_default="locked"
        ),
        sa.Column("unlocked", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("unlocked_at", sa.Integer(), nullable=True),
        sa.Column(
            "videos_watched",
            postgresql.JSONB(),
            nullable=False,
            server_default="[]",
        ),
        sa.Column(
            "quiz_attempts",
            postgresql.JSONB(),
            nullable=False,
            server_default="[]",
        ),
        sa.Column(
            "unit_quiz_completed",
            sa.Boolean(),
            nullable=False,
            server_default="false",
        ),
        sa.Column(
            "unit_quiz_passed", sa.Boolean(), nullable=False, server_default="false"
        ),
        sa.Column(
            "all_videos_watched",
            sa.Boolean(),
            nullable=False,
            server_default="false",
        ),
        sa.PrimaryKeyConstraint("student_id", "course_id", "unit_id"),
        sa.ForeignKeyConstraint(
            ["student_id", "course_id"],
            ["student_progress.student_id", "student_progress.course_id"],
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "status IN ('locked', 'in-progress', 'completed')",
            name="ck_unit_progress_status",
        ),
    )
    op.create_index(
        "ix_unit_progress_course_unit", "unit_progress", ["course_id", "unit_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_unit_progress_course_unit", table_name="unit_progress")
    op.drop_table("unit_progress")
    op.drop_index("ix_student_progress_course", table_name="student_progress")
    op.drop_table("student_progress")
