from __future__ import annotations

from typing import Protocol
from uuid import UUID


class EnrollmentRepo(Protocol):
    async def enroll(
        self, course_id: UUID, student_id: UUID, enrolled_at: int
    ) -> None: ...
    async def is_enrolled(self, course_id: UUID, student_id: UUID) -> bool: ...
    async def list_students(self, course_id: UUID) -> list[UUID]: ...


class InMemoryEnrollmentRepo:
    """Which students belong to which course, in enrollment order."""

    def __init__(self) -> None:
        self._by_course: dict[UUID, dict[UUID, int]] = {}

    async def enroll(self, course_id: UUID, student_id: UUID, enrolled_at: int) -> None:
        students = self._by_course.setdefault(course_id, {})
        if student_id in students:
            raise ValueError("student already enrolled")
        students[student_id] = enrolled_at

    async def is_enrolled(self, course_id: UUID, student_id: UUID) -> bool:
        return student_id in self._by_course.get(course_id, {})

    async def list_students(self, course_id: UUID) -> list[UUID]:
        return list(self._by_course.get(course_id, {}))


enrollment_repo = InMemoryEnrollmentRepo()
