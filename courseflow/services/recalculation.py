"""Full recalculation of unit access for one course.

The incremental triggers in unlock_service.py only look at what a single
event can change.  This module re-derives every student's unlock state from
first principles, so it is the repair path for anything they missed:

  - a unit whose predecessor quiz was passed but which never unlocked
    (a trigger failed for that student, or the pass arrived while eager
    unlocking was switched off)
  - an unlocked unit whose first video never made it into
    ``unlocked_videos``
  - entries left behind by deleted units

It never locks anything.  Running it twice in a row with no new passes or
enrollments in between makes zero transitions the second time.

Students are processed in batches of RECALC_BATCH_SIZE: each batch is one
``get_many`` read followed by per-student writes, which bounds both memory
and the time any single store call holds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from courseflow.core.config import SETTINGS
from courseflow.core.metrics import (
    PROPAGATION_FAILURES,
    RECALCULATION_DURATION,
    UNITS_UNLOCKED,
)
from courseflow.models.course import Unit
from courseflow.models.progress import StudentProgress
from courseflow.repos.catalog_repo import CatalogRepo
from courseflow.repos.enrollment_repo import EnrollmentRepo
from courseflow.repos.progress_repo import ProgressRepo
from courseflow.services.catalog_service import CourseNotFoundError
from courseflow.services.unlock_service import PER_STUDENT_ERRORS

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RecalculationResult:
    students_updated: int = 0
    units_unlocked: int = 0
    total_students: int = 0
    total_units: int = 0
    videos_unlocked: int = 0
    stale_entries_removed: int = 0
    failures: int = 0


@dataclass(frozen=True, slots=True)
class _CourseLayout:
    units: tuple[Unit, ...]
    unit_ids: frozenset[UUID]
    first_videos: dict[UUID, UUID | None]
    unit_videos: dict[UUID, frozenset[UUID]]


class UnitAccessRecalculator:
    def __init__(
        self,
        catalog: CatalogRepo,
        enrollments: EnrollmentRepo,
        store: ProgressRepo,
        *,
        batch_size: int | None = None,
    ) -> None:
        self._catalog = catalog
        self._enrollments = enrollments
        self._store = store
        self._batch_size = batch_size or SETTINGS.recalc_batch_size

    async def recalculate(self, course_id: UUID) -> RecalculationResult:
        course = await self._catalog.get_course(course_id)
        if course is None:
            raise CourseNotFoundError(str(course_id))

        students = await self._enrollments.list_students(course_id)
        units = await self._catalog.list_units(course_id)
        result = RecalculationResult(total_students=len(students))

        if not course.has_units or not units:
            logger.info(
                "Course has no units, nothing to recalculate",
                extra={"course_id": str(course_id), "trigger": "recalculate"},
            )
            return result
        result.total_units = len(units)

        with RECALCULATION_DURATION.time():
            layout = await self._layout(units)
            for start in range(0, len(students), self._batch_size):
                batch = students[start : start + self._batch_size]
                records = await self._store.get_many(course_id, batch)
                for student_id in batch:
                    await self._recalculate_student(
                        student_id, course_id, layout, records.get(student_id), result
                    )

        logger.info(
            "Recalculated course: students_updated=%d units_unlocked=%d "
            "videos_unlocked=%d stale_entries_removed=%d failures=%d",
            result.students_updated,
            result.units_unlocked,
            result.videos_unlocked,
            result.stale_entries_removed,
            result.failures,
            extra={"course_id": str(course_id), "trigger": "recalculate"},
        )
        return result

    async def _layout(self, units: list[Unit]) -> _CourseLayout:
        first_videos: dict[UUID, UUID | None] = {}
        unit_videos: dict[UUID, frozenset[UUID]] = {}
        for unit in units:
            videos = await self._catalog.list_unit_videos(unit.id)
            first_videos[unit.id] = videos[0].id if videos else None
            unit_videos[unit.id] = frozenset(v.id for v in videos)
        return _CourseLayout(
            units=tuple(units),
            unit_ids=frozenset(u.id for u in units),
            first_videos=first_videos,
            unit_videos=unit_videos,
        )

    async def _recalculate_student(
        self,
        student_id: UUID,
        course_id: UUID,
        layout: _CourseLayout,
        progress: StudentProgress | None,
        result: RecalculationResult,
    ) -> None:
        try:
            changed = await self._apply(student_id, course_id, layout, progress, result)
        except PER_STUDENT_ERRORS:
            result.failures += 1
            PROPAGATION_FAILURES.labels(trigger="recalculate").inc()
            logger.exception(
                "Recalculation failed for one student, skipping",
                extra={
                    "student_id": str(student_id),
                    "course_id": str(course_id),
                    "trigger": "recalculate",
                },
            )
            return
        if changed:
            result.students_updated += 1

    async def _apply(
        self,
        student_id: UUID,
        course_id: UUID,
        layout: _CourseLayout,
        progress: StudentProgress | None,
        result: RecalculationResult,
    ) -> bool:
        changed = False
        unlocked_videos = progress.unlocked_videos if progress else frozenset()

        if progress is not None:
            stale = frozenset(e.unit_id for e in progress.units) - layout.unit_ids
            if stale:
                removed = await self._store.remove_unit_entries(
                    student_id, course_id, stale
                )
                result.stale_entries_removed += removed
                changed = changed or removed > 0

        previous_order, previous_passed = -1, False
        for unit in layout.units:
            entry = progress.entry(unit.id) if progress is not None else None
            first_video_id = layout.first_videos[unit.id]
            # A gap in the orders blocks every unit after it.
            should_unlock = unit.order == 0 or (
                previous_passed and previous_order == unit.order - 1
            )

            if should_unlock and (entry is None or not entry.unlocked):
                if await self._store.unlock_unit(
                    student_id, course_id, unit.id, first_video_id
                ):
                    result.units_unlocked += 1
                    UNITS_UNLOCKED.labels(trigger="recalculate").inc()
                    if first_video_id is not None:
                        result.videos_unlocked += 1
                    changed = True
            elif (
                entry is not None
                and entry.unlocked
                and first_video_id is not None
                and not (layout.unit_videos[unit.id] & unlocked_videos)
            ):
                if await self._store.add_unlocked_video(
                    student_id, course_id, first_video_id
                ):
                    result.videos_unlocked += 1
                    changed = True

            previous_order = unit.order
            previous_passed = entry is not None and entry.unit_quiz_passed

        return changed
