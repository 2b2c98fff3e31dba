from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from courseflow.api.dependencies import (
    PendingInvalidationsDep,
    get_recalculator,
    require_role,
)
from courseflow.models.principal import Principal
from courseflow.services.catalog_service import CourseNotFoundError
from courseflow.services.recalculation import UnitAccessRecalculator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class RecalculationOut(BaseModel):
    students_updated: int
    units_unlocked: int
    total_students: int
    total_units: int
    videos_unlocked: int
    stale_entries_removed: int
    failures: int


@router.post("/courses/{course_id}/recalculate", response_model=RecalculationOut)
async def recalculate_course(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_role("admin"))],
    recalculator: Annotated[UnitAccessRecalculator, Depends(get_recalculator)],
    pending: PendingInvalidationsDep,
) -> RecalculationOut:
    logger.info(
        "Recalculation requested by user=%s",
        principal.user_id,
        extra={"course_id": str(course_id), "trigger": "recalculate"},
    )
    try:
        result = await recalculator.recalculate(course_id)
    except CourseNotFoundError:
        raise HTTPException(status_code=404, detail="course not found") from None

    pending.course(course_id)
    return RecalculationOut(
        students_updated=result.students_updated,
        units_unlocked=result.units_unlocked,
        total_students=result.total_students,
        total_units=result.total_units,
        videos_unlocked=result.videos_unlocked,
        stale_entries_removed=result.stale_entries_removed,
        failures=result.failures,
    )
