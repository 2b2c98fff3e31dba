"""Unlock Propagator — derives locked→unlocked transitions from trigger events.

GATING RULE
-------------
  the unit at order 0             unlocked as soon as the student is
                                  enrolled and the unit exists, in either
                                  arrival order
  the unit at order k > 0         unlocked once the entry of the unit at
                                  order k - 1 has ``unit_quiz_passed``;
                                  while no unit sits at k - 1 it stays
                                  locked

Whenever a unit unlocks, its first video (lowest ``sequence``) is granted
in the same store write (``ProgressRepo.unlock_unit``).

TRIGGERS
----------
  on_unit_created       a new unit may already be reachable
  on_unit_reordered     a moved unit, and the unit after its new
                        position, have a new predecessor
  on_video_created      a new (or newly attached) video may be the first
                        video of an already-unlocked unit, or a
                        course-level video
  on_student_enrolled   the new student gets the unit at order 0
  on_quiz_passed        the passing student gets the unit at order + 1

Each trigger is incremental: it only looks at what the event can change.
Anything it misses (a failed write, an event that never arrived) is
repaired by the full recalculation in recalculation.py.

FAILURES
----------
A TransientStoreError or InvalidTransitionError for one student is logged,
counted and skipped; the loop carries on with the next student and nothing
already written is rolled back.  Anything else (StoreUnavailableError
included) propagates to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from uuid import UUID

from courseflow.core.metrics import PROPAGATION_FAILURES, UNITS_UNLOCKED
from courseflow.models.course import Unit, Video
from courseflow.models.progress import InvalidTransitionError
from courseflow.repos.catalog_repo import CatalogRepo
from courseflow.repos.enrollment_repo import EnrollmentRepo
from courseflow.repos.progress_repo import ProgressRepo, TransientStoreError

logger = logging.getLogger(__name__)

PER_STUDENT_ERRORS = (TransientStoreError, InvalidTransitionError)


@dataclass(slots=True)
class PropagationResult:
    students_touched: int = 0
    units_unlocked: int = 0
    videos_unlocked: int = 0
    failures: int = 0

    def add(self, other: PropagationResult) -> None:
        self.students_touched += other.students_touched
        self.units_unlocked += other.units_unlocked
        self.videos_unlocked += other.videos_unlocked
        self.failures += other.failures


class UnlockPropagator:
    def __init__(
        self,
        catalog: CatalogRepo,
        enrollments: EnrollmentRepo,
        store: ProgressRepo,
    ) -> None:
        self._catalog = catalog
        self._enrollments = enrollments
        self._store = store

    # --- triggers ---

    async def on_unit_created(self, unit: Unit) -> PropagationResult:
        result = PropagationResult()
        await self._unlock_reachable(unit, "unit_created", result)
        logger.info(
            "Unit created: unit=%s order=%d unlocked for %d students",
            unit.id,
            unit.order,
            result.units_unlocked,
            extra={"course_id": str(unit.course_id), "trigger": "unit_created"},
        )
        return result

    async def on_unit_reordered(self, unit: Unit) -> PropagationResult:
        """A unit moved to a new order.

        Both the moved unit and the unit now right after it have a new
        predecessor.  Entries already unlocked stay unlocked.
        """
        result = PropagationResult()
        await self._unlock_reachable(unit, "unit_reordered", result)
        successor = await self._catalog.get_unit_by_order(
            unit.course_id, unit.order + 1
        )
        if successor is not None:
            await self._unlock_reachable(successor, "unit_reordered", result)
        logger.info(
            "Unit reordered: unit=%s order=%d unlocked %d units",
            unit.id,
            unit.order,
            result.units_unlocked,
            extra={"course_id": str(unit.course_id), "trigger": "unit_reordered"},
        )
        return result

    async def on_video_created(self, video: Video) -> PropagationResult:
        result = PropagationResult()

        if video.unit_id is None:
            students = await self._enrollments.list_students(video.course_id)

            async def grant(student_id: UUID) -> bool:
                return await self._grant(student_id, video.course_id, video.id, result)

            await self._for_each_student(
                "video_created", video.course_id, students, grant, result
            )
            return result

        unit_videos = await self._catalog.list_unit_videos(video.unit_id)
        if not unit_videos or unit_videos[0].id != video.id:
            # Later videos are reached by watching, not by propagation.
            return result
        sibling_ids = frozenset(v.id for v in unit_videos if v.id != video.id)

        candidates = [
            p.student_id
            for p in await self._store.list_by_course(video.course_id)
            if (entry := p.entry(video.unit_id)) is not None
            and entry.unlocked
            and not (sibling_ids & p.unlocked_videos)
        ]

        async def grant_first(student_id: UUID) -> bool:
            return await self._grant(student_id, video.course_id, video.id, result)

        await self._for_each_student(
            "video_created", video.course_id, candidates, grant_first, result
        )
        logger.info(
            "Video created: video=%s unit=%s granted to %d students",
            video.id,
            video.unit_id,
            result.videos_unlocked,
            extra={"course_id": str(video.course_id), "trigger": "video_created"},
        )
        return result

    async def on_student_enrolled(
        self, student_id: UUID, course_id: UUID
    ) -> PropagationResult:
        result = PropagationResult()
        first_unit = await self._catalog.get_unit_by_order(course_id, 0)
        course_videos = await self._catalog.list_course_videos(course_id)

        async def sync(sid: UUID) -> bool:
            changed = False
            if first_unit is not None:
                changed = await self._unlock(
                    sid,
                    course_id,
                    first_unit.id,
                    await self.first_video_id(first_unit.id),
                    "enrolled",
                    result,
                )
            for video in course_videos:
                changed = await self._grant(sid, course_id, video.id, result) or changed
            return changed

        await self._for_each_student("enrolled", course_id, [student_id], sync, result)
        return result

    async def on_quiz_passed(self, student_id: UUID, unit: Unit) -> PropagationResult:
        """Unlock the unit that follows ``unit`` for one student.

        No-op unless the student's entry for ``unit`` records a pass.
        """
        result = PropagationResult()
        progress = await self._store.get(student_id, unit.course_id)
        entry = progress.entry(unit.id) if progress is not None else None
        if entry is None or not entry.unit_quiz_passed:
            return result

        # Only the unit at exactly order + 1; with a gap, nothing unlocks
        # until the missing unit is created.
        next_unit = await self._catalog.get_unit_by_order(
            unit.course_id, unit.order + 1
        )
        if next_unit is None:
            return result

        async def unlock(sid: UUID) -> bool:
            return await self._unlock(
                sid,
                unit.course_id,
                next_unit.id,
                await self.first_video_id(next_unit.id),
                "quiz_passed",
                result,
            )

        await self._for_each_student(
            "quiz_passed", unit.course_id, [student_id], unlock, result
        )
        return result

    # --- helpers ---

    async def _unlock_reachable(
        self, unit: Unit, trigger: str, result: PropagationResult
    ) -> None:
        """Unlock ``unit`` for every student the gating rule lets reach it."""
        first_video_id = await self.first_video_id(unit.id)

        if unit.order == 0:
            candidates = await self._enrollments.list_students(unit.course_id)
        else:
            predecessor = await self._catalog.get_unit_by_order(
                unit.course_id, unit.order - 1
            )
            if predecessor is None:
                logger.info(
                    "No unit at order %d before unit=%s, nothing to unlock",
                    unit.order - 1,
                    unit.id,
                    extra={"course_id": str(unit.course_id), "trigger": trigger},
                )
                return
            candidates = [
                p.student_id
                for p in await self._store.list_by_course(unit.course_id)
                if (entry := p.entry(predecessor.id)) is not None
                and entry.unit_quiz_passed
            ]

        async def unlock(student_id: UUID) -> bool:
            return await self._unlock(
                student_id, unit.course_id, unit.id, first_video_id, trigger, result
            )

        await self._for_each_student(
            trigger, unit.course_id, candidates, unlock, result
        )

    async def first_video_id(self, unit_id: UUID) -> UUID | None:
        videos = await self._catalog.list_unit_videos(unit_id)
        return videos[0].id if videos else None

    async def _unlock(
        self,
        student_id: UUID,
        course_id: UUID,
        unit_id: UUID,
        first_video_id: UUID | None,
        trigger: str,
        result: PropagationResult,
    ) -> bool:
        if not await self._store.unlock_unit(
            student_id, course_id, unit_id, first_video_id
        ):
            return False
        result.units_unlocked += 1
        if first_video_id is not None:
            result.videos_unlocked += 1
        UNITS_UNLOCKED.labels(trigger=trigger).inc()
        logger.debug(
            "Unlocked unit=%s",
            unit_id,
            extra={
                "student_id": str(student_id),
                "course_id": str(course_id),
                "unit_id": str(unit_id),
                "trigger": trigger,
            },
        )
        return True

    async def _grant(
        self,
        student_id: UUID,
        course_id: UUID,
        video_id: UUID,
        result: PropagationResult,
    ) -> bool:
        if not await self._store.add_unlocked_video(student_id, course_id, video_id):
            return False
        result.videos_unlocked += 1
        return True

    async def _for_each_student(
        self,
        trigger: str,
        course_id: UUID,
        student_ids: Iterable[UUID],
        apply: Callable[[UUID], Awaitable[bool]],
        result: PropagationResult,
    ) -> None:
        for student_id in student_ids:
            try:
                changed = await apply(student_id)
            except PER_STUDENT_ERRORS:
                result.failures += 1
                PROPAGATION_FAILURES.labels(trigger=trigger).inc()
                logger.exception(
                    "Propagation failed for one student, skipping",
                    extra={
                        "student_id": str(student_id),
                        "course_id": str(course_id),
                        "trigger": trigger,
                    },
                )
                continue
            if changed:
                result.students_touched += 1
