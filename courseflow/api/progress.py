"""Progress endpoints: student writes and the cached student view.

  POST /v1/progress/quiz-results                      grader/admin
    → record attempt → (pass + eager) unlock next unit → invalidate view
  POST /v1/progress/videos/{video_id}/watch           student
  POST /v1/progress/reading-materials/{rm_id}/complete student
  GET  /v1/progress/courses/{course_id}               student
    → read-through cache (hit → return; miss → build view → populate)
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from courseflow.api.courses import PropagationOut
from courseflow.api.dependencies import (
    PendingInvalidationsDep,
    get_progress_service,
    get_student_view_reader,
    require_any_role,
    require_user,
)
from courseflow.models.principal import Principal
from courseflow.models.progress import InvalidTransitionError, UnitProgress, UnitStatus
from courseflow.services.cache import PendingInvalidations, read_view, write_view
from courseflow.services.catalog_service import (
    CourseNotFoundError,
    ReadingMaterialNotFoundError,
    UnitNotFoundError,
    VideoNotFoundError,
)
from courseflow.services.enrollment_service import NotEnrolledError
from courseflow.services.progress_service import ProgressService, UnitLockedError
from courseflow.services.student_view import StudentViewReader

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/progress", tags=["progress"])

StudentDep = Annotated[Principal, Depends(require_user)]
ProgressServiceDep = Annotated[ProgressService, Depends(get_progress_service)]


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class QuizResultIn(BaseModel):
    student_id: UUID
    unit_id: UUID
    passed: bool
    score: int | None = Field(default=None, ge=0)
    quiz_id: UUID | None = None


class VideoWatchIn(BaseModel):
    watch_time: int = Field(ge=0)  # seconds
    completed: bool = False


class VideoWatchOut(BaseModel):
    video_id: UUID
    watch_time: int
    completed: bool


class UnitProgressOut(BaseModel):
    unit_id: UUID
    status: UnitStatus
    unlocked: bool
    unlocked_at: int | None
    videos_watched: list[VideoWatchOut]
    quiz_attempts: int
    unit_quiz_completed: bool
    unit_quiz_passed: bool
    all_videos_watched: bool

    @staticmethod
    def of(entry: UnitProgress) -> UnitProgressOut:
        return UnitProgressOut(
            unit_id=entry.unit_id,
            status=entry.status,
            unlocked=entry.unlocked,
            unlocked_at=entry.unlocked_at,
            videos_watched=[
                VideoWatchOut(
                    video_id=w.video_id, watch_time=w.watch_time, completed=w.completed
                )
                for w in entry.videos_watched
            ],
            quiz_attempts=len(entry.quiz_attempts),
            unit_quiz_completed=entry.unit_quiz_completed,
            unit_quiz_passed=entry.unit_quiz_passed,
            all_videos_watched=entry.all_videos_watched,
        )


class QuizResultOut(BaseModel):
    entry: UnitProgressOut
    propagation: PropagationOut | None


class ReadingCompletedOut(BaseModel):
    material_id: UUID
    completed: bool
    newly_completed: bool


class _ViewModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class VideoViewOut(_ViewModel):
    id: UUID
    title: str
    sequence: int
    url: str
    duration: int | None
    watch_time: int
    completed: bool


class QuizViewOut(_ViewModel):
    id: UUID
    title: str
    passed: bool


class QuizPoolViewOut(_ViewModel):
    id: UUID
    title: str
    questions_per_attempt: int


class ReadingMaterialViewOut(_ViewModel):
    id: UUID
    title: str
    content_type: str
    completed: bool


class UnitViewOut(_ViewModel):
    id: UUID
    order: int
    title: str
    description: str
    status: UnitStatus
    unlocked: bool
    unit_quiz_passed: bool
    all_videos_watched: bool
    videos: list[VideoViewOut]
    quizzes: list[QuizViewOut]
    quiz_pools: list[QuizPoolViewOut]
    reading_materials: list[ReadingMaterialViewOut]
    videos_completed: int
    total_videos: int
    reading_materials_completed: int
    total_reading_materials: int
    quizzes_passed: int
    total_quizzes: int


class StudentViewOut(_ViewModel):
    student_id: UUID
    course_id: UUID
    course_title: str
    has_progress: bool
    units: list[UnitViewOut]
    course_videos: list[VideoViewOut]


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def _conflict(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@router.post("/quiz-results", response_model=QuizResultOut)
async def record_quiz_result(
    body: QuizResultIn,
    principal: Annotated[Principal, Depends(require_any_role({"admin", "grader"}))],
    progress: ProgressServiceDep,
    pending: PendingInvalidationsDep,
) -> QuizResultOut:
    try:
        entry, propagation = await progress.record_quiz_result(
            student_id=body.student_id,
            unit_id=body.unit_id,
            passed=body.passed,
            score=body.score,
            quiz_id=body.quiz_id,
        )
    except UnitNotFoundError:
        raise _not_found("unit not found") from None
    except NotEnrolledError:
        raise _not_found("student not enrolled in course") from None
    except (UnitLockedError, InvalidTransitionError) as e:
        raise _conflict(str(e)) from None

    logger.info(
        "Quiz result submitted by user=%s for student=%s",
        principal.user_id,
        body.student_id,
    )
    # The propagation only ever touches this student's record.
    await _invalidate_for_unit_entry(pending, body.student_id, progress, body.unit_id)
    return QuizResultOut(
        entry=UnitProgressOut.of(entry),
        propagation=PropagationOut.of(propagation) if propagation else None,
    )


@router.post("/videos/{video_id}/watch", response_model=UnitProgressOut)
async def record_video_watch(
    video_id: UUID,
    body: VideoWatchIn,
    principal: StudentDep,
    progress: ProgressServiceDep,
    pending: PendingInvalidationsDep,
) -> UnitProgressOut:
    try:
        entry = await progress.record_video_watch(
            student_id=principal.user_id,
            video_id=video_id,
            watch_time=body.watch_time,
            completed=body.completed,
        )
    except VideoNotFoundError:
        raise _not_found("video not found") from None
    except UnitNotFoundError:
        raise _not_found("unit not found") from None
    except NotEnrolledError:
        raise _not_found("not enrolled in course") from None
    except (UnitLockedError, InvalidTransitionError) as e:
        raise _conflict(str(e)) from None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    await _invalidate_for_unit_entry(
        pending, principal.user_id, progress, entry.unit_id
    )
    return UnitProgressOut.of(entry)


@router.post(
    "/reading-materials/{rm_id}/complete",
    response_model=ReadingCompletedOut,
)
async def mark_reading_completed(
    rm_id: UUID,
    principal: StudentDep,
    progress: ProgressServiceDep,
    pending: PendingInvalidationsDep,
) -> ReadingCompletedOut:
    try:
        added = await progress.mark_reading_completed(
            student_id=principal.user_id, material_id=rm_id
        )
        course_id = await progress.course_of_reading_material(rm_id)
    except ReadingMaterialNotFoundError:
        raise _not_found("reading material not found") from None
    except UnitNotFoundError:
        raise _not_found("unit not found") from None
    except NotEnrolledError:
        raise _not_found("not enrolled in course") from None
    except UnitLockedError as e:
        raise _conflict(str(e)) from None

    pending.student(course_id, principal.user_id)
    return ReadingCompletedOut(material_id=rm_id, completed=True, newly_completed=added)


async def _invalidate_for_unit_entry(
    pending: PendingInvalidations,
    student_id: UUID,
    progress: ProgressService,
    unit_id: UUID,
) -> None:
    course_id = await progress.course_of_unit(unit_id)
    pending.student(course_id, student_id)


# ---------------------------------------------------------------------------
# GET /v1/progress/courses/{course_id}  — read-through cached
# ---------------------------------------------------------------------------


@router.get("/courses/{course_id}", response_model=StudentViewOut)
async def get_student_view(
    course_id: UUID,
    principal: StudentDep,
    reader: Annotated[StudentViewReader, Depends(get_student_view_reader)],
) -> StudentViewOut:
    """The course as this student sees it, served through the view cache."""
    cached = await read_view(course_id, principal.user_id)
    if cached is not None:
        return StudentViewOut.model_validate_json(cached)

    try:
        view = await reader.get_student_view(principal.user_id, course_id)
    except CourseNotFoundError:
        raise _not_found("course not found") from None
    except NotEnrolledError:
        raise _not_found("not enrolled in course") from None

    out = StudentViewOut.model_validate(view)
    await write_view(course_id, principal.user_id, out.model_dump_json())
    return out
