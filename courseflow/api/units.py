"""Unit and video management endpoints (instructor/admin).

  GET    /v1/units/{unit_id}                      any user
  PATCH  /v1/units/{unit_id}                      → on_unit_reordered (new order)
  DELETE /v1/units/{unit_id}                      unit, its content and unlocks
  POST   /v1/units/{unit_id}/videos               → on_video_created
  DELETE /v1/units/{unit_id}/videos/{video_id}    → on_video_created
  DELETE /v1/videos/{video_id}
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from courseflow.api.courses import PropagationOut, UnitOut, VideoOut
from courseflow.api.dependencies import (
    PendingInvalidationsDep,
    get_catalog_service,
    require_any_role,
    require_user,
)
from courseflow.models.course import UnitContent
from courseflow.models.principal import Principal
from courseflow.repos.catalog_repo import DuplicateUnitOrderError
from courseflow.services.catalog_service import (
    CatalogService,
    UnitNotFoundError,
    VideoNotFoundError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["units"])

AuthorDep = Annotated[Principal, Depends(require_any_role({"admin", "instructor"}))]
CatalogDep = Annotated[CatalogService, Depends(get_catalog_service)]


class UnitUpdateIn(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    order: int | None = Field(default=None, ge=0)


class UnitUpdatedOut(UnitOut):
    propagation: PropagationOut


class UnitVideoIn(BaseModel):
    video_id: UUID
    sequence: int | None = Field(default=None, ge=1)


class UnitVideoOut(BaseModel):
    video: VideoOut
    propagation: PropagationOut


class QuizIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)


class QuizOut(BaseModel):
    id: UUID
    unit_id: UUID
    title: str


class QuizPoolIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    questions_per_attempt: int = Field(default=5, ge=1)


class QuizPoolOut(BaseModel):
    id: UUID
    unit_id: UUID
    title: str
    questions_per_attempt: int


class ReadingMaterialIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content_type: str = Field(default="text", pattern="^(text|pdf|link)$")
    order: int = Field(default=0, ge=0)


class ReadingMaterialOut(BaseModel):
    id: UUID
    course_id: UUID
    unit_id: UUID | None
    title: str
    content_type: str
    order: int


class UnitDetailOut(UnitOut):
    videos: list[VideoOut]
    quizzes: list[QuizOut]
    quiz_pools: list[QuizPoolOut]
    reading_materials: list[ReadingMaterialOut]

    @staticmethod
    def of_content(content: UnitContent) -> UnitDetailOut:
        return UnitDetailOut(
            **UnitOut.of(content.unit).model_dump(),
            videos=[VideoOut.of(v) for v in content.videos],
            quizzes=[
                QuizOut(id=q.id, unit_id=q.unit_id, title=q.title)
                for q in content.quizzes
            ],
            quiz_pools=[
                QuizPoolOut(
                    id=p.id,
                    unit_id=p.unit_id,
                    title=p.title,
                    questions_per_attempt=p.questions_per_attempt,
                )
                for p in content.quiz_pools
            ],
            reading_materials=[
                ReadingMaterialOut(
                    id=m.id,
                    course_id=m.course_id,
                    unit_id=m.unit_id,
                    title=m.title,
                    content_type=m.content_type,
                    order=m.order,
                )
                for m in content.reading_materials
            ],
        )


def _unit_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="unit not found")


def _video_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="video not found")


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------


@router.get("/units/{unit_id}", response_model=UnitDetailOut)
async def get_unit(
    unit_id: UUID,
    _principal: Annotated[Principal, Depends(require_user)],
    catalog: CatalogDep,
) -> UnitDetailOut:
    try:
        content = await catalog.get_unit_content(unit_id)
    except UnitNotFoundError:
        raise _unit_not_found() from None
    return UnitDetailOut.of_content(content)


@router.patch("/units/{unit_id}", response_model=UnitUpdatedOut)
async def update_unit(
    unit_id: UUID,
    body: UnitUpdateIn,
    principal: AuthorDep,
    catalog: CatalogDep,
    pending: PendingInvalidationsDep,
) -> UnitUpdatedOut:
    try:
        unit, result = await catalog.update_unit(
            unit_id,
            title=body.title,
            description=body.description,
            order=body.order,
        )
    except UnitNotFoundError:
        raise _unit_not_found() from None
    except (DuplicateUnitOrderError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    logger.info("Unit %s updated by user=%s", unit.id, principal.user_id)
    pending.course(unit.course_id)
    return UnitUpdatedOut(
        **UnitOut.of(unit).model_dump(), propagation=PropagationOut.of(result)
    )


@router.delete("/units/{unit_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_unit(
    unit_id: UUID,
    principal: AuthorDep,
    catalog: CatalogDep,
    pending: PendingInvalidationsDep,
) -> Response:
    try:
        unit = await catalog.delete_unit(unit_id)
    except UnitNotFoundError:
        raise _unit_not_found() from None
    logger.info("Unit %s deleted by user=%s", unit.id, principal.user_id)
    pending.course(unit.course_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Videos
# ---------------------------------------------------------------------------


@router.post("/units/{unit_id}/videos", response_model=UnitVideoOut)
async def attach_video(
    unit_id: UUID,
    body: UnitVideoIn,
    principal: AuthorDep,
    catalog: CatalogDep,
    pending: PendingInvalidationsDep,
) -> UnitVideoOut:
    try:
        video, result = await catalog.attach_video_to_unit(
            unit_id=unit_id, video_id=body.video_id, sequence=body.sequence
        )
    except UnitNotFoundError:
        raise _unit_not_found() from None
    except VideoNotFoundError:
        raise _video_not_found() from None

    logger.info(
        "Video %s attached to unit %s by user=%s",
        video.id,
        unit_id,
        principal.user_id,
    )
    pending.course(video.course_id)
    return UnitVideoOut(video=VideoOut.of(video), propagation=PropagationOut.of(result))


@router.delete("/units/{unit_id}/videos/{video_id}", response_model=UnitVideoOut)
async def detach_video(
    unit_id: UUID,
    video_id: UUID,
    principal: AuthorDep,
    catalog: CatalogDep,
    pending: PendingInvalidationsDep,
) -> UnitVideoOut:
    try:
        video, result = await catalog.detach_video_from_unit(
            unit_id=unit_id, video_id=video_id
        )
    except VideoNotFoundError:
        raise _video_not_found() from None

    logger.info(
        "Video %s detached from unit %s by user=%s",
        video.id,
        unit_id,
        principal.user_id,
    )
    pending.course(video.course_id)
    return UnitVideoOut(video=VideoOut.of(video), propagation=PropagationOut.of(result))


@router.delete("/videos/{video_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_video(
    video_id: UUID,
    principal: AuthorDep,
    catalog: CatalogDep,
    pending: PendingInvalidationsDep,
) -> Response:
    try:
        video = await catalog.delete_video(video_id)
    except VideoNotFoundError:
        raise _video_not_found() from None
    logger.info("Video %s deleted by user=%s", video.id, principal.user_id)
    pending.course(video.course_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Unit content
# ---------------------------------------------------------------------------


@router.post(
    "/units/{unit_id}/quizzes",
    response_model=QuizOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_quiz(
    unit_id: UUID,
    body: QuizIn,
    _principal: AuthorDep,
    catalog: CatalogDep,
    pending: PendingInvalidationsDep,
) -> QuizOut:
    try:
        quiz = await catalog.add_quiz(unit_id=unit_id, title=body.title)
        unit = await catalog.get_unit(unit_id)
    except UnitNotFoundError:
        raise _unit_not_found() from None
    pending.course(unit.course_id)
    return QuizOut(id=quiz.id, unit_id=quiz.unit_id, title=quiz.title)


@router.post(
    "/units/{unit_id}/quiz-pools",
    response_model=QuizPoolOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_quiz_pool(
    unit_id: UUID,
    body: QuizPoolIn,
    _principal: AuthorDep,
    catalog: CatalogDep,
    pending: PendingInvalidationsDep,
) -> QuizPoolOut:
    try:
        pool = await catalog.add_quiz_pool(
            unit_id=unit_id,
            title=body.title,
            questions_per_attempt=body.questions_per_attempt,
        )
        unit = await catalog.get_unit(unit_id)
    except UnitNotFoundError:
        raise _unit_not_found() from None
    pending.course(unit.course_id)
    return QuizPoolOut(
        id=pool.id,
        unit_id=pool.unit_id,
        title=pool.title,
        questions_per_attempt=pool.questions_per_attempt,
    )


@router.post(
    "/units/{unit_id}/reading-materials",
    response_model=ReadingMaterialOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_reading_material(
    unit_id: UUID,
    body: ReadingMaterialIn,
    _principal: AuthorDep,
    catalog: CatalogDep,
    pending: PendingInvalidationsDep,
) -> ReadingMaterialOut:
    try:
        material = await catalog.add_reading_material(
            unit_id=unit_id,
            title=body.title,
            content_type=body.content_type,
            order=body.order,
        )
    except UnitNotFoundError:
        raise _unit_not_found() from None
    pending.course(material.course_id)
    return ReadingMaterialOut(
        id=material.id,
        course_id=material.course_id,
        unit_id=material.unit_id,
        title=material.title,
        content_type=material.content_type,
        order=material.order,
    )
