from __future__ import annotations

import logging
from dataclasses import replace
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
from courseflow.repos.catalog_repo import CatalogRepo
from courseflow.repos.progress_repo import ProgressRepo
from courseflow.services.unlock_service import PropagationResult, UnlockPropagator

logger = logging.getLogger(__name__)


class CourseNotFoundError(LookupError):
    pass


class UnitNotFoundError(LookupError):
    pass


class VideoNotFoundError(LookupError):
    pass


class ReadingMaterialNotFoundError(LookupError):
    pass


class CatalogService:
    """Catalog writes, each followed by the propagation it triggers."""

    def __init__(
        self,
        catalog: CatalogRepo,
        store: ProgressRepo,
        propagator: UnlockPropagator,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._propagator = propagator

    # --- courses ---

    async def create_course(self, *, title: str, created_by: UUID | None) -> Course:
        title = title.strip()
        if not title:
            raise ValueError("title must be non-empty")
        course = Course.new(title=title, created_by=created_by)
        await self._catalog.add_course(course)
        logger.info("Created course=%s title=%s", course.id, course.title)
        return course

    async def get_course(self, course_id: UUID) -> Course:
        course = await self._catalog.get_course(course_id)
        if course is None:
            raise CourseNotFoundError(str(course_id))
        return course

    async def list_courses(self) -> list[Course]:
        return await self._catalog.list_courses()

    # --- units ---

    async def list_units(self, course_id: UUID) -> list[Unit]:
        await self.get_course(course_id)
        return await self._catalog.list_units(course_id)

    async def get_unit(self, unit_id: UUID) -> Unit:
        unit = await self._catalog.get_unit(unit_id)
        if unit is None:
            raise UnitNotFoundError(str(unit_id))
        return unit

    async def create_unit(
        self,
        *,
        course_id: UUID,
        title: str,
        description: str = "",
        order: int | None = None,
    ) -> tuple[Unit, PropagationResult]:
        """Create a unit and unlock it for every student who can already reach it.

        ``order`` defaults to one past the highest existing order (0 for the
        first unit).  Raises DuplicateUnitOrderError when the order is taken.
        """
        await self.get_course(course_id)
        if order is None:
            existing = await self._catalog.list_units(course_id)
            order = max((u.order for u in existing), default=-1) + 1
        if order < 0:
            raise ValueError("order must be >= 0")

        unit = Unit.new(
            course_id=course_id, order=order, title=title, description=description
        )
        await self._catalog.add_unit(unit)
        logger.info(
            "Created unit=%s order=%d",
            unit.id,
            unit.order,
            extra={"course_id": str(course_id)},
        )
        return unit, await self._propagator.on_unit_created(unit)

    async def get_unit_content(self, unit_id: UUID) -> UnitContent:
        content = await self._catalog.unit_content(unit_id)
        if content is None:
            raise UnitNotFoundError(str(unit_id))
        return content

    async def update_unit(
        self,
        unit_id: UUID,
        *,
        title: str | None = None,
        description: str | None = None,
        order: int | None = None,
    ) -> tuple[Unit, PropagationResult]:
        """Change a unit's title, description or order.

        A new order runs the reorder trigger.  Raises DuplicateUnitOrderError
        when the order is taken by another unit of the course.
        """
        unit = await self.get_unit(unit_id)
        if title is not None:
            title = title.strip()
            if not title:
                raise ValueError("title must be non-empty")
        if order is not None and order < 0:
            raise ValueError("order must be >= 0")

        updated = replace(
            unit,
            title=unit.title if title is None else title,
            description=unit.description if description is None else description,
            order=unit.order if order is None else order,
        )
        await self._catalog.update_unit(updated)
        logger.info(
            "Updated unit=%s order=%d->%d",
            unit.id,
            unit.order,
            updated.order,
            extra={"course_id": str(unit.course_id)},
        )
        if updated.order == unit.order:
            return updated, PropagationResult()
        return updated, await self._propagator.on_unit_reordered(updated)

    async def delete_unit(self, unit_id: UUID) -> Unit:
        """Delete a unit and all of its content.

        The unit's videos leave every student's unlocked set at once.  Progress
        entries for the unit stay behind until the next recalculation prunes
        them.
        """
        videos = await self._catalog.list_unit_videos(unit_id)
        unit = await self._catalog.remove_unit(unit_id)
        if unit is None:
            raise UnitNotFoundError(str(unit_id))
        revoked = 0
        for video in videos:
            revoked += await self._store.remove_unlocked_video(unit.course_id, video.id)
        logger.info(
            "Deleted unit=%s order=%d with %d videos, %d unlocks revoked",
            unit.id,
            unit.order,
            len(videos),
            revoked,
            extra={"course_id": str(unit.course_id)},
        )
        return unit

    # --- videos ---

    async def create_video(
        self,
        *,
        course_id: UUID,
        title: str,
        unit_id: UUID | None = None,
        sequence: int | None = None,
        url: str = "",
        duration: int | None = None,
    ) -> tuple[Video, PropagationResult]:
        await self.get_course(course_id)
        if unit_id is not None:
            unit = await self._catalog.get_unit(unit_id)
            if unit is None or unit.course_id != course_id:
                raise UnitNotFoundError(str(unit_id))
            siblings = await self._catalog.list_unit_videos(unit_id)
        else:
            siblings = await self._catalog.list_course_videos(course_id)
        if sequence is None:
            sequence = len(siblings) + 1

        video = Video.new(
            course_id=course_id,
            title=title,
            sequence=sequence,
            unit_id=unit_id,
            url=url,
            duration=duration,
        )
        await self._catalog.add_video(video)
        logger.info(
            "Created video=%s unit=%s sequence=%d",
            video.id,
            unit_id,
            sequence,
            extra={"course_id": str(course_id)},
        )
        return video, await self._propagator.on_video_created(video)

    async def delete_video(self, video_id: UUID) -> Video:
        video = await self._catalog.remove_video(video_id)
        if video is None:
            raise VideoNotFoundError(str(video_id))
        revoked = await self._store.remove_unlocked_video(video.course_id, video.id)
        logger.info(
            "Deleted video=%s, removed from %d progress records",
            video.id,
            revoked,
            extra={"course_id": str(video.course_id)},
        )
        return video

    async def attach_video_to_unit(
        self, *, unit_id: UUID, video_id: UUID, sequence: int | None = None
    ) -> tuple[Video, PropagationResult]:
        """Move a video of the same course into a unit.

        The moved video may become the unit's first video, and the unit it
        left may have a new first video; both run the video trigger.
        """
        unit = await self.get_unit(unit_id)
        video = await self._catalog.get_video(video_id)
        if video is None or video.course_id != unit.course_id:
            raise VideoNotFoundError(str(video_id))
        if sequence is None:
            siblings = await self._catalog.list_unit_videos(unit_id)
            sequence = max((v.sequence for v in siblings), default=0) + 1

        previous_unit_id = video.unit_id
        moved = replace(video, unit_id=unit_id, sequence=sequence)
        await self._catalog.update_video(moved)
        logger.info(
            "Attached video=%s to unit=%s sequence=%d",
            video.id,
            unit_id,
            sequence,
            extra={"course_id": str(unit.course_id), "unit_id": str(unit_id)},
        )

        result = await self._propagator.on_video_created(moved)
        if previous_unit_id is not None and previous_unit_id != unit_id:
            result.add(await self._refresh_first_video(previous_unit_id))
        return moved, result

    async def detach_video_from_unit(
        self, *, unit_id: UUID, video_id: UUID
    ) -> tuple[Video, PropagationResult]:
        """Turn a unit video into a course-level video.

        Course-level videos are open to every enrolled student, and the unit
        may have a new first video.
        """
        video = await self._catalog.get_video(video_id)
        if video is None or video.unit_id != unit_id:
            raise VideoNotFoundError(str(video_id))
        detached = replace(video, unit_id=None)
        await self._catalog.update_video(detached)
        logger.info(
            "Detached video=%s from unit=%s",
            video.id,
            unit_id,
            extra={"course_id": str(video.course_id), "unit_id": str(unit_id)},
        )

        result = await self._propagator.on_video_created(detached)
        result.add(await self._refresh_first_video(unit_id))
        return detached, result

    async def _refresh_first_video(self, unit_id: UUID) -> PropagationResult:
        videos = await self._catalog.list_unit_videos(unit_id)
        if not videos:
            return PropagationResult()
        return await self._propagator.on_video_created(videos[0])

    # --- unit content ---

    async def add_quiz(self, *, unit_id: UUID, title: str) -> Quiz:
        await self.get_unit(unit_id)
        quiz = Quiz.new(unit_id=unit_id, title=title)
        await self._catalog.add_quiz(quiz)
        return quiz

    async def add_quiz_pool(
        self, *, unit_id: UUID, title: str, questions_per_attempt: int = 5
    ) -> QuizPool:
        await self.get_unit(unit_id)
        if questions_per_attempt < 1:
            raise ValueError("questions_per_attempt must be >= 1")
        pool = QuizPool.new(
            unit_id=unit_id, title=title, questions_per_attempt=questions_per_attempt
        )
        await self._catalog.add_quiz_pool(pool)
        return pool

    async def add_reading_material(
        self,
        *,
        unit_id: UUID,
        title: str,
        content_type: str = "text",
        order: int = 0,
    ) -> ReadingMaterial:
        unit = await self.get_unit(unit_id)
        material = ReadingMaterial.new(
            course_id=unit.course_id,
            title=title,
            unit_id=unit_id,
            content_type=content_type,
            order=order,
        )
        await self._catalog.add_reading_material(material)
        return material
