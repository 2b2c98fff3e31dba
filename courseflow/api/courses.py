"""Course catalog and enrollment endpoints.

Every write that can change who may see what runs the matching trigger
before the response is sent:

  POST /v1/courses/{id}/enroll   → on_student_enrolled
  POST /v1/courses/{id}/units    → on_unit_created
  POST /v1/courses/{id}/videos   → on_video_created

and then drops the cached student views it may have made stale.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from courseflow.api.dependencies import (
    PendingInvalidationsDep,
    get_catalog_service,
    get_enrollment_service,
    require_any_role,
    require_user,
)
from courseflow.models.course import Course, Unit, Video
from courseflow.models.principal import Principal
from courseflow.repos.catalog_repo import DuplicateUnitOrderError
from courseflow.services.catalog_service import (
    CatalogService,
    CourseNotFoundError,
    UnitNotFoundError,
)
from courseflow.services.enrollment_service import (
    AlreadyEnrolledError,
    EnrollmentService,
)
from courseflow.services.unlock_service import PropagationResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/courses", tags=["courses"])

_AUTHORS = {"admin", "instructor"}


class CourseIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)


class CourseOut(BaseModel):
    id: UUID
    title: str
    has_units: bool
    unit_count: int
    video_count: int

    @staticmethod
    def of(course: Course) -> CourseOut:
        return CourseOut(
            id=course.id,
            title=course.title,
            has_units=course.has_units,
            unit_count=len(course.unit_ids),
            video_count=len(course.video_ids),
        )


class PropagationOut(BaseModel):
    students_touched: int
    units_unlocked: int
    videos_unlocked: int
    failures: int

    @staticmethod
    def of(result: PropagationResult) -> PropagationOut:
        return PropagationOut(
            students_touched=result.students_touched,
            units_unlocked=result.units_unlocked,
            videos_unlocked=result.videos_unlocked,
            failures=result.failures,
        )


class EnrollmentOut(BaseModel):
    student_id: UUID
    course_id: UUID
    propagation: PropagationOut


class UnitIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    order: int | None = Field(default=None, ge=0)


class UnitOut(BaseModel):
    id: UUID
    course_id: UUID
    order: int
    title: str
    description: str

    @staticmethod
    def of(unit: Unit) -> UnitOut:
        return UnitOut(
            id=unit.id,
            course_id=unit.course_id,
            order=unit.order,
            title=unit.title,
            description=unit.description,
        )


class UnitCreatedOut(UnitOut):
    propagation: PropagationOut


class VideoIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    unit_id: UUID | None = None
    sequence: int | None = Field(default=None, ge=1)
    url: str = ""
    duration: int | None = Field(default=None, ge=0)


class VideoOut(BaseModel):
    id: UUID
    course_id: UUID
    unit_id: UUID | None
    title: str
    sequence: int
    url: str
    duration: int | None

    @staticmethod
    def of(video: Video) -> VideoOut:
        return VideoOut(
            id=video.id,
            course_id=video.course_id,
            unit_id=video.unit_id,
            title=video.title,
            sequence=video.sequence,
            url=video.url,
            duration=video.duration,
        )


class VideoCreatedOut(VideoOut):
    propagation: PropagationOut


def _course_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="course not found")


# ---------------------------------------------------------------------------
# Courses
# ---------------------------------------------------------------------------


@router.get("", response_model=list[CourseOut])
async def list_courses(
    _principal: Annotated[Principal, Depends(require_user)],
    catalog: Annotated[CatalogService, Depends(get_catalog_service)],
) -> list[CourseOut]:
    return [CourseOut.of(c) for c in await catalog.list_courses()]


@router.post("", response_model=CourseOut, status_code=status.HTTP_201_CREATED)
async def create_course(
    body: CourseIn,
    principal: Annotated[Principal, Depends(require_any_role(_AUTHORS))],
    catalog: Annotated[CatalogService, Depends(get_catalog_service)],
) -> CourseOut:
    try:
        course = await catalog.create_course(
            title=body.title, created_by=principal.user_id
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    return CourseOut.of(course)


@router.post(
    "/{course_id}/enroll",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll_in_course(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    enrollment: Annotated[EnrollmentService, Depends(get_enrollment_service)],
    pending: PendingInvalidationsDep,
) -> EnrollmentOut:
    try:
        result = await enrollment.enroll(
            course_id=course_id, student_id=principal.user_id
        )
    except CourseNotFoundError:
        raise _course_not_found() from None
    except AlreadyEnrolledError:
        raise HTTPException(status_code=409, detail="already enrolled") from None

    pending.student(course_id, principal.user_id)
    return EnrollmentOut(
        student_id=principal.user_id,
        course_id=course_id,
        propagation=PropagationOut.of(result),
    )


# ---------------------------------------------------------------------------
# Units and videos of a course
# ---------------------------------------------------------------------------


@router.get("/{course_id}/units", response_model=list[UnitOut])
async def list_units(
    course_id: UUID,
    _principal: Annotated[Principal, Depends(require_user)],
    catalog: Annotated[CatalogService, Depends(get_catalog_service)],
) -> list[UnitOut]:
    try:
        units = await catalog.list_units(course_id)
    except CourseNotFoundError:
        raise _course_not_found() from None
    return [UnitOut.of(u) for u in units]


@router.post(
    "/{course_id}/units",
    response_model=UnitCreatedOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_unit(
    course_id: UUID,
    body: UnitIn,
    principal: Annotated[Principal, Depends(require_any_role(_AUTHORS))],
    catalog: Annotated[CatalogService, Depends(get_catalog_service)],
    pending: PendingInvalidationsDep,
) -> UnitCreatedOut:
    try:
        unit, result = await catalog.create_unit(
            course_id=course_id,
            title=body.title,
            description=body.description,
            order=body.order,
        )
    except CourseNotFoundError:
        raise _course_not_found() from None
    except DuplicateUnitOrderError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    logger.info("Unit %s created by user=%s", unit.id, principal.user_id)
    pending.course(course_id)
    return UnitCreatedOut(
        **UnitOut.of(unit).model_dump(), propagation=PropagationOut.of(result)
    )


@router.post(
    "/{course_id}/videos",
    response_model=VideoCreatedOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_video(
    course_id: UUID,
    body: VideoIn,
    principal: Annotated[Principal, Depends(require_any_role(_AUTHORS))],
    catalog: Annotated[CatalogService, Depends(get_catalog_service)],
    pending: PendingInvalidationsDep,
) -> VideoCreatedOut:
    try:
        video, result = await catalog.create_video(
            course_id=course_id,
            title=body.title,
            unit_id=body.unit_id,
            sequence=body.sequence,
            url=body.url,
            duration=body.duration,
        )
    except CourseNotFoundError:
        raise _course_not_found() from None
    except UnitNotFoundError:
        raise HTTPException(status_code=404, detail="unit not found") from None

    logger.info("Video %s created by user=%s", video.id, principal.user_id)
    pending.course(course_id)
    return VideoCreatedOut(
        **VideoOut.of(video).model_dump(), propagation=PropagationOut.of(result)
    )
