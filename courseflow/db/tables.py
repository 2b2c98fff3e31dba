"""SQLAlchemy table definitions for the Progress Store.

These map to the frozen dataclasses in courseflow/models/progress.py.
PgProgressRepo converts between rows and dataclasses.

  student_progress   one row per (student, course); the two id sets
  unit_progress      one row per (student, course, unit); ``position``
                     keeps the insertion order of the entries
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from courseflow.db.engine import Base


class StudentProgressRow(Base):
    __tablename__ = "student_progress"

    student_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    course_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    unlocked_videos: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=list
    )
    completed_reading_materials: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=list
    )
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (Index("ix_student_progress_course", "course_id"),)


class UnitProgressRow(Base):
    __tablename__ = "unit_progress"

    student_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    course_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    unit_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="locked"
    )  # locked|in-progress|completed
    unlocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    unlocked_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    videos_watched: Mapped[list[dict]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    quiz_attempts: Mapped[list[dict]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    unit_quiz_completed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    unit_quiz_passed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    all_videos_watched: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    __table_args__ = (
        ForeignKeyConstraint(
            ["student_id", "course_id"],
            ["student_progress.student_id", "student_progress.course_id"],
            ondelete="CASCADE",
        ),
        CheckConstraint(
            "status IN ('locked', 'in-progress', 'completed')",
            name="ck_unit_progress_status",
        ),
        Index("ix_unit_progress_course_unit", "course_id", "unit_id"),
    )
