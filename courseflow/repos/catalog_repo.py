from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from courseflow.models.course import (
    Course,
    Quiz,
    QuizPool,
    ReadingMaterial,
    Unit,
    UnitContent,
    Video,
)


class DuplicateUnitOrderError(ValueError):
    pass


class CatalogRepo(Protocol):
    async def add_course(self, course: Course) -> None: ...
    async def get_course(self, course_id: UUID) -> Course | None: ...
    async def list_courses(self) -> list[Course]: ...
    async def add_unit(self, unit: Unit) -> None: ...
    async def get_unit(self, unit_id: UUID) -> Unit | None: ...
    async def get_unit_by_order(self, course_id: UUID, order: int) -> Unit | None: ...
    async def list_units(self, course_id: UUID) -> list[Unit]: ...
    async def update_unit(self, unit: Unit) -> None: ...
    async def remove_unit(self, unit_id: UUID) -> Unit | None: ...
    async def add_video(self, video: Video) -> None: ...
    async def get_video(self, video_id: UUID) -> Video | None: ...
    async def update_video(self, video: Video) -> None: ...
    async def list_unit_videos(self, unit_id: UUID) -> list[Video]: ...
    async def list_course_videos(self, course_id: UUID) -> list[Video]: ...
    async def remove_video(self, video_id: UUID) -> Video | None: ...
    async def add_quiz(self, quiz: Quiz) -> None: ...
    async def add_quiz_pool(self, pool: QuizPool) -> None: ...
    async def add_reading_material(self, material: ReadingMaterial) -> None: ...
    async def get_reading_material(
        self, material_id: UUID
    ) -> ReadingMaterial | None: ...
    async def unit_content(self, unit_id: UUID) -> UnitContent | None: ...


class InMemoryCatalogRepo:
    """Courses and everything under them, keyed by id.

    Child collections are stored flat and filtered by parent id on read;
    ``Course.unit_ids``/``video_ids``/``has_units`` are kept in step on
    every add/remove.
    """

    def __init__(self) -> None:
        self._courses: dict[UUID, Course] = {}
        self._units: dict[UUID, Unit] = {}
        self._videos: dict[UUID, Video] = {}
        self._quizzes: dict[UUID, Quiz] = {}
        self._quiz_pools: dict[UUID, QuizPool] = {}
        self._reading_materials: dict[UUID, ReadingMaterial] = {}

    # --- courses ---

    async def add_course(self, course: Course) -> None:
        if course.id in self._courses:
            raise ValueError("course already exists")
        self._courses[course.id] = course

    async def get_course(self, course_id: UUID) -> Course | None:
        return self._courses.get(course_id)

    async def list_courses(self) -> list[Course]:
        return list(self._courses.values())

    # --- units ---

    async def add_unit(self, unit: Unit) -> None:
        course = self._courses.get(unit.course_id)
        if course is None:
            raise KeyError("course not found")
        if any(
            u.course_id == unit.course_id and u.order == unit.order
            for u in self._units.values()
        ):
            raise DuplicateUnitOrderError(
                f"a unit with order {unit.order} already exists in this course"
            )
        self._units[unit.id] = unit
        self._courses[course.id] = replace(
            course, unit_ids=(*course.unit_ids, unit.id), has_units=True
        )

    async def get_unit(self, unit_id: UUID) -> Unit | None:
        return self._units.get(unit_id)

    async def get_unit_by_order(self, course_id: UUID, order: int) -> Unit | None:
        for unit in self._units.values():
            if unit.course_id == course_id and unit.order == order:
                return unit
        return None

    async def list_units(self, course_id: UUID) -> list[Unit]:
        units = [u for u in self._units.values() if u.course_id == course_id]
        return sorted(units, key=lambda u: u.order)

    async def update_unit(self, unit: Unit) -> None:
        """Replace a stored unit; the order must stay unique in its course."""
        if unit.id not in self._units:
            raise KeyError("unit not found")
        if any(
            u.course_id == unit.course_id and u.order == unit.order
            for u in self._units.values()
            if u.id != unit.id
        ):
            raise DuplicateUnitOrderError(
                f"a unit with order {unit.order} already exists in this course"
            )
        self._units[unit.id] = unit

    async def remove_unit(self, unit_id: UUID) -> Unit | None:
        """Remove a unit together with every video, quiz, quiz pool and
        reading material it owns."""
        unit = self._units.pop(unit_id, None)
        if unit is None:
            return None
        dead_videos = {v.id for v in self._videos.values() if v.unit_id == unit_id}
        for video_id in dead_videos:
            del self._videos[video_id]
        for children in (self._quizzes, self._quiz_pools, self._reading_materials):
            for child_id in [k for k, c in children.items() if c.unit_id == unit_id]:
                del children[child_id]

        course = self._courses.get(unit.course_id)
        if course is not None:
            remaining = tuple(uid for uid in course.unit_ids if uid != unit_id)
            self._courses[course.id] = replace(
                course,
                unit_ids=remaining,
                video_ids=tuple(
                    vid for vid in course.video_ids if vid not in dead_videos
                ),
                has_units=bool(remaining),
            )
        return unit

    # --- videos ---

    async def add_video(self, video: Video) -> None:
        course = self._courses.get(video.course_id)
        if course is None:
            raise KeyError("course not found")
        self._videos[video.id] = video
        self._courses[course.id] = replace(
            course, video_ids=(*course.video_ids, video.id)
        )

    async def get_video(self, video_id: UUID) -> Video | None:
        return self._videos.get(video_id)

    async def update_video(self, video: Video) -> None:
        if video.id not in self._videos:
            raise KeyError("video not found")
        self._videos[video.id] = video

    async def list_unit_videos(self, unit_id: UUID) -> list[Video]:
        # sorted() is stable, so equal sequences keep insertion order
        videos = [v for v in self._videos.values() if v.unit_id == unit_id]
        return sorted(videos, key=lambda v: v.sequence)

    async def list_course_videos(self, course_id: UUID) -> list[Video]:
        """Course-level videos that do not belong to any unit."""
        videos = [
            v
            for v in self._videos.values()
            if v.course_id == course_id and v.unit_id is None
        ]
        return sorted(videos, key=lambda v: v.sequence)

    async def remove_video(self, video_id: UUID) -> Video | None:
        video = self._videos.pop(video_id, None)
        if video is None:
            return None
        course = self._courses.get(video.course_id)
        if course is not None:
            self._courses[course.id] = replace(
                course,
                video_ids=tuple(vid for vid in course.video_ids if vid != video_id),
            )
        return video

    # --- unit content ---

    async def add_quiz(self, quiz: Quiz) -> None:
        self._quizzes[quiz.id] = quiz

    async def add_quiz_pool(self, pool: QuizPool) -> None:
        self._quiz_pools[pool.id] = pool

    async def add_reading_material(self, material: ReadingMaterial) -> None:
        self._reading_materials[material.id] = material

    async def get_reading_material(self, material_id: UUID) -> ReadingMaterial | None:
        return self._reading_materials.get(material_id)

    async def unit_content(self, unit_id: UUID) -> UnitContent | None:
        unit = self._units.get(unit_id)
        if unit is None:
            return None
        return UnitContent(
            unit=unit,
            videos=tuple(await self.list_unit_videos(unit_id)),
            quizzes=tuple(q for q in self._quizzes.values() if q.unit_id == unit_id),
            quiz_pools=tuple(
                p for p in self._quiz_pools.values() if p.unit_id == unit_id
            ),
            reading_materials=tuple(
                sorted(
                    (
                        m
                        for m in self._reading_materials.values()
                        if m.unit_id == unit_id
                    ),
                    key=lambda m: m.order,
                )
            ),
        )


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

catalog_repo = InMemoryCatalogRepo()
