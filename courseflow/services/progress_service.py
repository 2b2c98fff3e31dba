"""Student-facing progress writes.

These writers record what a student did (quiz results, watch time, reading
completion).  None of them ever flips ``unlocked``; a passing quiz result
hands off to the propagator, which owns every unlock.
"""

from __future__ import annotations

import logging
from uuid import UUID

from courseflow.core.config import SETTINGS
from courseflow.models.course import Unit
from courseflow.models.progress import (
    QuizAttempt,
    StudentProgress,
    UnitProgress,
    UnitStatus,
    VideoWatch,
)
from courseflow.repos.catalog_repo import CatalogRepo
from courseflow.repos.enrollment_repo import EnrollmentRepo
from courseflow.repos.progress_repo import ProgressRepo, now_ts
from courseflow.services.catalog_service import (
    ReadingMaterialNotFoundError,
    UnitNotFoundError,
    VideoNotFoundError,
)
from courseflow.services.enrollment_service import NotEnrolledError
from courseflow.services.unlock_service import PropagationResult, UnlockPropagator

logger = logging.getLogger(__name__)


class UnitLockedError(Exception):
    """The student has not unlocked the unit (or video) being written to."""


class ProgressService:
    def __init__(
        self,
        catalog: CatalogRepo,
        enrollments: EnrollmentRepo,
        store: ProgressRepo,
        propagator: UnlockPropagator,
        *,
        eager_quiz_unlock: bool | None = None,
    ) -> None:
        self._catalog = catalog
        self._enrollments = enrollments
        self._store = store
        self._propagator = propagator
        if eager_quiz_unlock is None:
            eager_quiz_unlock = SETTINGS.eager_quiz_unlock
        self._eager_quiz_unlock = eager_quiz_unlock

    async def record_quiz_result(
        self,
        *,
        student_id: UUID,
        unit_id: UUID,
        passed: bool,
        score: int | None = None,
        quiz_id: UUID | None = None,
    ) -> tuple[UnitProgress, PropagationResult | None]:
        """Append a graded attempt to the student's unit entry.

        A pass sets ``unit_quiz_passed`` (never cleared by a later fail) and
        completes the unit; with eager unlocking on, the next unit is
        unlocked before this returns.
        """
        unit = await self._unit(unit_id)
        entry = await self._unlocked_entry(student_id, unit)

        attempt = QuizAttempt(
            quiz_id=quiz_id, passed=passed, attempted_at=now_ts(), score=score
        )
        patch: dict[str, object] = {
            "quiz_attempts": (*entry.quiz_attempts, attempt),
            "unit_quiz_completed": True,
        }
        if passed:
            patch["unit_quiz_passed"] = True
            patch["status"] = UnitStatus.COMPLETED

        updated = await self._store.upsert_unit_entry(
            student_id, unit.course_id, unit.id, patch
        )
        logger.info(
            "Quiz result recorded: unit=%s passed=%s score=%s",
            unit.id,
            passed,
            score,
            extra={"student_id": str(student_id), "course_id": str(unit.course_id)},
        )

        propagation = None
        if passed and self._eager_quiz_unlock:
            propagation = await self._propagator.on_quiz_passed(student_id, unit)
        return updated, propagation

    async def record_video_watch(
        self,
        *,
        student_id: UUID,
        video_id: UUID,
        watch_time: int,
        completed: bool,
    ) -> UnitProgress:
        """Record watch time for a unit video.

        Watch time only grows and ``completed`` only goes False -> True.
        Completing a video grants the next video of the unit; completing the
        last one sets ``all_videos_watched``.
        """
        video = await self._catalog.get_video(video_id)
        if video is None:
            raise VideoNotFoundError(str(video_id))
        if video.unit_id is None:
            raise ValueError("watch tracking applies to unit videos only")
        unit = await self._unit(video.unit_id)
        progress = await self._progress(student_id, unit.course_id)
        entry = _unlocked(progress, unit)

        unit_videos = await self._catalog.list_unit_videos(unit.id)
        accessible = progress.unlocked_videos | {unit_videos[0].id}
        if video.id not in accessible:
            raise UnitLockedError(f"video {video.id} is locked")

        previous = entry.watch_for(video.id)
        watch = VideoWatch(
            video_id=video.id,
            watch_time=max(watch_time, previous.watch_time if previous else 0),
            completed=completed or (previous is not None and previous.completed),
        )
        watched = [w for w in entry.videos_watched if w.video_id != video.id]
        watched.append(watch)
        done = {w.video_id for w in watched if w.completed}

        patch: dict[str, object] = {"videos_watched": tuple(watched)}
        if all(v.id in done for v in unit_videos):
            patch["all_videos_watched"] = True
        updated = await self._store.upsert_unit_entry(
            student_id, unit.course_id, unit.id, patch
        )

        if watch.completed:
            ids = [v.id for v in unit_videos]
            position = ids.index(video.id)
            if position + 1 < len(ids):
                await self._store.add_unlocked_video(
                    student_id, unit.course_id, ids[position + 1]
                )
        return updated

    async def mark_reading_completed(
        self, *, student_id: UUID, material_id: UUID
    ) -> bool:
        material = await self._catalog.get_reading_material(material_id)
        if material is None:
            raise ReadingMaterialNotFoundError(str(material_id))
        if material.unit_id is not None:
            await self._unlocked_entry(student_id, await self._unit(material.unit_id))
        elif not await self._enrollments.is_enrolled(material.course_id, student_id):
            raise NotEnrolledError(str(material.course_id))
        return await self._store.add_completed_reading_material(
            student_id, material.course_id, material.id
        )

    async def course_of_unit(self, unit_id: UUID) -> UUID:
        return (await self._unit(unit_id)).course_id

    async def course_of_reading_material(self, material_id: UUID) -> UUID:
        material = await self._catalog.get_reading_material(material_id)
        if material is None:
            raise ReadingMaterialNotFoundError(str(material_id))
        return material.course_id

    # --- helpers ---

    async def _unit(self, unit_id: UUID) -> Unit:
        unit = await self._catalog.get_unit(unit_id)
        if unit is None:
            raise UnitNotFoundError(str(unit_id))
        return unit

    async def _progress(self, student_id: UUID, course_id: UUID) -> StudentProgress:
        if not await self._enrollments.is_enrolled(course_id, student_id):
            raise NotEnrolledError(str(course_id))
        progress = await self._store.get(student_id, course_id)
        if progress is None:
            return StudentProgress(student_id=student_id, course_id=course_id)
        return progress

    async def _unlocked_entry(self, student_id: UUID, unit: Unit) -> UnitProgress:
        return _unlocked(await self._progress(student_id, unit.course_id), unit)


def _unlocked(progress: StudentProgress, unit: Unit) -> UnitProgress:
    entry = progress.entry(unit.id)
    if entry is None or not entry.unlocked:
        raise UnitLockedError(f"unit {unit.id} is locked")
    return entry
