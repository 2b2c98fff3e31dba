from __future__ import annotations

import logging
from uuid import UUID

from courseflow.repos.catalog_repo import CatalogRepo
from courseflow.repos.enrollment_repo import EnrollmentRepo
from courseflow.repos.progress_repo import now_ts
from courseflow.services.catalog_service import CourseNotFoundError
from courseflow.services.unlock_service import PropagationResult, UnlockPropagator

logger = logging.getLogger(__name__)


class AlreadyEnrolledError(Exception):
    pass


class NotEnrolledError(LookupError):
    pass


class EnrollmentService:
    def __init__(
        self,
        catalog: CatalogRepo,
        enrollments: EnrollmentRepo,
        propagator: UnlockPropagator,
    ) -> None:
        self._catalog = catalog
        self._enrollments = enrollments
        self._propagator = propagator

    async def enroll(self, *, course_id: UUID, student_id: UUID) -> PropagationResult:
        """Record the enrollment, then sync the student's first unit."""
        if await self._catalog.get_course(course_id) is None:
            raise CourseNotFoundError(str(course_id))
        if await self._enrollments.is_enrolled(course_id, student_id):
            logger.warning(
                "Rejected duplicate enrollment",
                extra={"student_id": str(student_id), "course_id": str(course_id)},
            )
            raise AlreadyEnrolledError(str(course_id))

        await self._enrollments.enroll(course_id, student_id, now_ts())
        logger.info(
            "Student enrolled",
            extra={"student_id": str(student_id), "course_id": str(course_id)},
        )
        return await self._propagator.on_student_enrolled(student_id, course_id)
