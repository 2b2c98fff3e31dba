from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    title: str
    unit_ids: tuple[UUID, ...] = ()
    video_ids: tuple[UUID, ...] = ()
    has_units: bool = False  # False = flat, ungated video list
    created_by: UUID | None = None

    @staticmethod
    def new(*, title: str, created_by: UUID | None = None) -> Course:
        return Course(id=uuid4(), title=title, created_by=created_by)


@dataclass(frozen=True, slots=True)
class Unit:
    """An ordered chapter of a course; the atomic gating granularity."""

    id: UUID
    course_id: UUID
    order: int
    title: str
    description: str = ""

    @staticmethod
    def new(
        *, course_id: UUID, order: int, title: str, description: str = ""
    ) -> Unit:
        return Unit(
            id=uuid4(),
            course_id=course_id,
            order=order,
            title=title,
            description=description,
        )


@dataclass(frozen=True, slots=True)
class Video:
    id: UUID
    course_id: UUID
    title: str
    sequence: int = 1
    unit_id: UUID | None = None
    url: str = ""
    duration: int | None = None  # seconds

    @staticmethod
    def new(
        *,
        course_id: UUID,
        title: str,
        sequence: int = 1,
        unit_id: UUID | None = None,
        url: str = "",
        duration: int | None = None,
    ) -> Video:
        return Video(
            id=uuid4(),
            course_id=course_id,
            title=title,
            sequence=sequence,
            unit_id=unit_id,
            url=url,
            duration=duration,
        )


@dataclass(frozen=True, slots=True)
class Quiz:
    id: UUID
    unit_id: UUID
    title: str

    @staticmethod
    def new(*, unit_id: UUID, title: str) -> Quiz:
        return Quiz(id=uuid4(), unit_id=unit_id, title=title)


@dataclass(frozen=True, slots=True)
class QuizPool:
    id: UUID
    unit_id: UUID
    title: str
    questions_per_attempt: int = 5

    @staticmethod
    def new(*, unit_id: UUID, title: str, questions_per_attempt: int = 5) -> QuizPool:
        return QuizPool(
            id=uuid4(),
            unit_id=unit_id,
            title=title,
            questions_per_attempt=questions_per_attempt,
        )


@dataclass(frozen=True, slots=True)
class ReadingMaterial:
    id: UUID
    course_id: UUID
    title: str
    unit_id: UUID | None = None
    content_type: str = "text"  # text|pdf|link
    order: int = 0

    @staticmethod
    def new(
        *,
        course_id: UUID,
        title: str,
        unit_id: UUID | None = None,
        content_type: str = "text",
        order: int = 0,
    ) -> ReadingMaterial:
        return ReadingMaterial(
            id=uuid4(),
            course_id=course_id,
            title=title,
            unit_id=unit_id,
            content_type=content_type,
            order=order,
        )


@dataclass(frozen=True, slots=True)
class UnitContent:
    """A unit joined with everything it owns, each collection in display order."""

    unit: Unit
    videos: tuple[Video, ...] = ()
    quizzes: tuple[Quiz, ...] = ()
    quiz_pools: tuple[QuizPool, ...] = ()
    reading_materials: tuple[ReadingMaterial, ...] = ()
