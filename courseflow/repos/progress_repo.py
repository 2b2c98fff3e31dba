"""Progress Store — durable per-(student, course) unlock/completion state.

Every store implements the ProgressRepo protocol below.  The in-memory
implementation backs dev and tests; PgProgressRepo (pg_progress_repo.py)
is used when DATABASE_URL is configured.

CONTRACT
----------
  get / get_many / list_by_course   read whole records
  upsert_unit_entry                 create record and entry on demand,
                                    otherwise merge the patch
  add_unlocked_video                set semantics, returns True if added
  unlock_unit                       the unlock transition plus the
                                    first-video grant, as one call

At most one record exists per (student, course): records are created by
check-then-create, never by blind insert.

Operations for different students are independent.  Two writers racing on
the same field of the same record resolve last-write-wins; because
``unlocked`` only ever moves False -> True, such a race can only end
unlocked, and the next recalculation fills in anything that was missed.

FAILURES
----------
  TransientStoreError   one operation failed; the caller may skip this
                        student and carry on with the rest of a batch
  StoreUnavailableError the store itself is gone; propagate to the caller
"""

from __future__ import annotations

import datetime
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from courseflow.models.progress import (
    StudentProgress,
    UnitProgress,
    UnitStatus,
    apply_patch,
)


class TransientStoreError(Exception):
    pass


class StoreUnavailableError(Exception):
    pass


def now_ts() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


def unlock_patch(unlocked_at: int) -> dict[str, object]:
    return {
        "unlocked": True,
        "unlocked_at": unlocked_at,
        "status": UnitStatus.IN_PROGRESS,
    }


class ProgressRepo(Protocol):
    async def get(
        self, student_id: UUID, course_id: UUID
    ) -> StudentProgress | None: ...
    async def get_many(
        self, course_id: UUID, student_ids: Iterable[UUID]
    ) -> dict[UUID, StudentProgress]: ...
    async def list_by_course(self, course_id: UUID) -> list[StudentProgress]: ...
    async def upsert_unit_entry(
        self,
        student_id: UUID,
        course_id: UUID,
        unit_id: UUID,
        patch: Mapping[str, object],
    ) -> UnitProgress: ...
    async def add_unlocked_video(
        self, student_id: UUID, course_id: UUID, video_id: UUID
    ) -> bool: ...
    async def unlock_unit(
        self,
        student_id: UUID,
        course_id: UUID,
        unit_id: UUID,
        first_video_id: UUID | None = None,
    ) -> bool: ...
    async def remove_unit_entries(
        self, student_id: UUID, course_id: UUID, unit_ids: frozenset[UUID]
    ) -> int: ...
    async def remove_unlocked_video(self, course_id: UUID, video_id: UUID) -> int: ...
    async def add_completed_reading_material(
        self, student_id: UUID, course_id: UUID, material_id: UUID
    ) -> bool: ...


class InMemoryProgressRepo:
    """Dict-backed store.  Each method runs without awaiting, so it is
    atomic with respect to other coroutines on the event loop."""

    def __init__(self) -> None:
        self._store: dict[tuple[UUID, UUID], StudentProgress] = {}

    def _ensure(self, student_id: UUID, course_id: UUID) -> StudentProgress:
        key = (student_id, course_id)
        progress = self._store.get(key)
        if progress is None:
            progress = StudentProgress(student_id=student_id, course_id=course_id)
            self._store[key] = progress
        return progress

    async def get(self, student_id: UUID, course_id: UUID) -> StudentProgress | None:
        return self._store.get((student_id, course_id))

    async def get_many(
        self, course_id: UUID, student_ids: Iterable[UUID]
    ) -> dict[UUID, StudentProgress]:
        found = {}
        for student_id in student_ids:
            progress = self._store.get((student_id, course_id))
            if progress is not None:
                found[student_id] = progress
        return found

    async def list_by_course(self, course_id: UUID) -> list[StudentProgress]:
        return [p for (_, cid), p in self._store.items() if cid == course_id]

    async def upsert_unit_entry(
        self,
        student_id: UUID,
        course_id: UUID,
        unit_id: UUID,
        patch: Mapping[str, object],
    ) -> UnitProgress:
        progress = self._ensure(student_id, course_id)
        current = progress.entry(unit_id) or UnitProgress(unit_id=unit_id)
        updated = apply_patch(current, patch)
        self._store[(student_id, course_id)] = progress.with_entry(updated)
        return updated

    async def add_unlocked_video(
        self, student_id: UUID, course_id: UUID, video_id: UUID
    ) -> bool:
        progress = self._ensure(student_id, course_id)
        if video_id in progress.unlocked_videos:
            return False
        self._store[(student_id, course_id)] = replace(
            progress, unlocked_videos=progress.unlocked_videos | {video_id}
        )
        return True

    async def unlock_unit(
        self,
        student_id: UUID,
        course_id: UUID,
        unit_id: UUID,
        first_video_id: UUID | None = None,
    ) -> bool:
        progress = self._ensure(student_id, course_id)
        current = progress.entry(unit_id)
        if current is not None and current.unlocked:
            return False
        updated = apply_patch(
            current or UnitProgress(unit_id=unit_id), unlock_patch(now_ts())
        )
        progress = progress.with_entry(updated)
        if first_video_id is not None:
            progress = replace(
                progress, unlocked_videos=progress.unlocked_videos | {first_video_id}
            )
        self._store[(student_id, course_id)] = progress
        return True

    async def remove_unit_entries(
        self, student_id: UUID, course_id: UUID, unit_ids: frozenset[UUID]
    ) -> int:
        progress = self._store.get((student_id, course_id))
        if progress is None:
            return 0
        trimmed = progress.without_entries(unit_ids)
        self._store[(student_id, course_id)] = trimmed
        return len(progress.units) - len(trimmed.units)

    async def remove_unlocked_video(self, course_id: UUID, video_id: UUID) -> int:
        removed = 0
        for key, progress in list(self._store.items()):
            if key[1] == course_id and video_id in progress.unlocked_videos:
                self._store[key] = replace(
                    progress, unlocked_videos=progress.unlocked_videos - {video_id}
                )
                removed += 1
        return removed

    async def add_completed_reading_material(
        self, student_id: UUID, course_id: UUID, material_id: UUID
    ) -> bool:
        progress = self._ensure(student_id, course_id)
        if material_id in progress.completed_reading_materials:
            return False
        self._store[(student_id, course_id)] = replace(
            progress,
            completed_reading_materials=progress.completed_reading_materials
            | {material_id},
        )
        return True


# ---------------------------------------------------------------------------
# Module-level singleton (used when DATABASE_URL is not configured)
# ---------------------------------------------------------------------------

progress_repo = InMemoryProgressRepo()
