"""PostgreSQL implementation of ProgressRepo."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from courseflow.db.tables import StudentProgressRow, UnitProgressRow
from courseflow.models.progress import (
    QuizAttempt,
    StudentProgress,
    UnitProgress,
    UnitStatus,
    VideoWatch,
    apply_patch,
)
from courseflow.repos.progress_repo import (
    StoreUnavailableError,
    TransientStoreError,
    now_ts,
    unlock_patch,
)

_UUID_ARRAY = ARRAY(PG_UUID(as_uuid=True))


@contextmanager
def _store_errors() -> Iterator[None]:
    """Translate driver errors into the store's two failure kinds."""
    try:
        yield
    except DBAPIError as e:
        if e.connection_invalidated:
            raise StoreUnavailableError(str(e.orig)) from e
        raise TransientStoreError(str(e.orig)) from e
    except SQLAlchemyError as e:
        raise TransientStoreError(str(e)) from e
    except OSError as e:
        raise StoreUnavailableError(str(e)) from e


class PgProgressRepo:
    """Satisfies the ProgressRepo Protocol using PostgreSQL via SQLAlchemy.

    Each public method runs in its own SAVEPOINT, so one failing student
    does not abort the surrounding request transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # --- reads ---

    async def get(self, student_id: UUID, course_id: UUID) -> StudentProgress | None:
        found = await self._load(course_id, [student_id])
        return found.get(student_id)

    async def get_many(
        self, course_id: UUID, student_ids: Iterable[UUID]
    ) -> dict[UUID, StudentProgress]:
        return await self._load(course_id, list(student_ids))

    async def list_by_course(self, course_id: UUID) -> list[StudentProgress]:
        return list((await self._load(course_id, None)).values())

    # --- writes ---

    async def upsert_unit_entry(
        self,
        student_id: UUID,
        course_id: UUID,
        unit_id: UUID,
        patch: Mapping[str, object],
    ) -> UnitProgress:
        with _store_errors():
            async with self._session.begin_nested():
                await self._ensure(student_id, course_id)
                return await self._upsert(student_id, course_id, unit_id, patch)

    async def add_unlocked_video(
        self, student_id: UUID, course_id: UUID, video_id: UUID
    ) -> bool:
        with _store_errors():
            async with self._session.begin_nested():
                await self._ensure(student_id, course_id)
                return await self._append(
                    "unlocked_videos", student_id, course_id, video_id
                )

    async def unlock_unit(
        self,
        student_id: UUID,
        course_id: UUID,
        unit_id: UUID,
        first_video_id: UUID | None = None,
    ) -> bool:
        with _store_errors():
            async with self._session.begin_nested():
                await self._ensure(student_id, course_id)
                row = await self._unit_row(student_id, course_id, unit_id)
                if row is not None and row.unlocked:
                    return False
                await self._upsert(
                    student_id, course_id, unit_id, unlock_patch(now_ts()), row=row
                )
                if first_video_id is not None:
                    await self._append(
                        "unlocked_videos", student_id, course_id, first_video_id
                    )
                return True

    async def remove_unit_entries(
        self, student_id: UUID, course_id: UUID, unit_ids: frozenset[UUID]
    ) -> int:
        if not unit_ids:
            return 0
        stmt = delete(UnitProgressRow).where(
            UnitProgressRow.student_id == student_id,
            UnitProgressRow.course_id == course_id,
            UnitProgressRow.unit_id.in_(unit_ids),
        )
        with _store_errors():
            async with self._session.begin_nested():
                result = await self._session.execute(stmt)
        return result.rowcount

    async def remove_unlocked_video(self, course_id: UUID, video_id: UUID) -> int:
        stmt = (
            update(StudentProgressRow)
            .where(
                StudentProgressRow.course_id == course_id,
                StudentProgressRow.unlocked_videos.contains([video_id]),
            )
            .values(
                unlocked_videos=func.array_remove(
                    StudentProgressRow.unlocked_videos, video_id, type_=_UUID_ARRAY
                )
            )
        )
        with _store_errors():
            async with self._session.begin_nested():
                result = await self._session.execute(stmt)
        return result.rowcount

    async def add_completed_reading_material(
        self, student_id: UUID, course_id: UUID, material_id: UUID
    ) -> bool:
        with _store_errors():
            async with self._session.begin_nested():
                await self._ensure(student_id, course_id)
                return await self._append(
                    "completed_reading_materials", student_id, course_id, material_id
                )

    # --- helpers ---

    async def _ensure(self, student_id: UUID, course_id: UUID) -> None:
        # Check-then-create: the primary key makes a racing insert a no-op.
        stmt = (
            pg_insert(StudentProgressRow)
            .values(
                student_id=student_id,
                course_id=course_id,
                unlocked_videos=[],
                completed_reading_materials=[],
                created_at=now_ts(),
            )
            .on_conflict_do_nothing(index_elements=["student_id", "course_id"])
        )
        await self._session.execute(stmt)

    async def _unit_row(
        self, student_id: UUID, course_id: UUID, unit_id: UUID
    ) -> UnitProgressRow | None:
        stmt = (
            select(UnitProgressRow)
            .where(
                UnitProgressRow.student_id == student_id,
                UnitProgressRow.course_id == course_id,
                UnitProgressRow.unit_id == unit_id,
            )
            .with_for_update()
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def _upsert(
        self,
        student_id: UUID,
        course_id: UUID,
        unit_id: UUID,
        patch: Mapping[str, object],
        *,
        row: UnitProgressRow | None = None,
    ) -> UnitProgress:
        if row is None:
            row = await self._unit_row(student_id, course_id, unit_id)
        if row is None:
            entry = apply_patch(UnitProgress(unit_id=unit_id), patch)
            position_stmt = select(
                func.coalesce(func.max(UnitProgressRow.position), -1) + 1
            ).where(
                UnitProgressRow.student_id == student_id,
                UnitProgressRow.course_id == course_id,
            )
            position = (await self._session.execute(position_stmt)).scalar_one()
            row = UnitProgressRow(
                student_id=student_id,
                course_id=course_id,
                unit_id=unit_id,
                position=position,
            )
            _copy_entry_to_row(entry, row)
            self._session.add(row)
        else:
            entry = apply_patch(_row_to_entry(row), patch)
            _copy_entry_to_row(entry, row)
        await self._session.flush()
        return entry

    async def _append(
        self, column: str, student_id: UUID, course_id: UUID, value: UUID
    ) -> bool:
        col = getattr(StudentProgressRow, column)
        stmt = (
            update(StudentProgressRow)
            .where(
                StudentProgressRow.student_id == student_id,
                StudentProgressRow.course_id == course_id,
                ~col.contains([value]),
            )
            .values({column: func.array_append(col, value, type_=_UUID_ARRAY)})
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def _load(
        self, course_id: UUID, student_ids: list[UUID] | None
    ) -> dict[UUID, StudentProgress]:
        record_stmt = select(StudentProgressRow).where(
            StudentProgressRow.course_id == course_id
        )
        unit_stmt = (
            select(UnitProgressRow)
            .where(UnitProgressRow.course_id == course_id)
            .order_by(UnitProgressRow.student_id, UnitProgressRow.position)
        )
        if student_ids is not None:
            if not student_ids:
                return {}
            record_stmt = record_stmt.where(
                StudentProgressRow.student_id.in_(student_ids)
            )
            unit_stmt = unit_stmt.where(UnitProgressRow.student_id.in_(student_ids))

        with _store_errors():
            records = (await self._session.execute(record_stmt)).scalars().all()
            unit_rows = (await self._session.execute(unit_stmt)).scalars().all()

        entries: dict[UUID, list[UnitProgress]] = {}
        for unit_row in unit_rows:
            entries.setdefault(unit_row.student_id, []).append(_row_to_entry(unit_row))

        return {
            r.student_id: StudentProgress(
                student_id=r.student_id,
                course_id=r.course_id,
                units=tuple(entries.get(r.student_id, ())),
                unlocked_videos=frozenset(r.unlocked_videos or ()),
                completed_reading_materials=frozenset(
                    r.completed_reading_materials or ()
                ),
            )
            for r in records
        }


def _row_to_entry(row: UnitProgressRow) -> UnitProgress:
    return UnitProgress(
        unit_id=row.unit_id,
        status=UnitStatus(row.status),
        unlocked=row.unlocked,
        unlocked_at=row.unlocked_at,
        videos_watched=tuple(
            VideoWatch(
                video_id=UUID(w["video_id"]),
                watch_time=w.get("watch_time", 0),
                completed=w.get("completed", False),
            )
            for w in row.videos_watched or ()
        ),
        quiz_attempts=tuple(
            QuizAttempt(
                quiz_id=UUID(a["quiz_id"]) if a.get("quiz_id") else None,
                passed=a["passed"],
                attempted_at=a["attempted_at"],
                score=a.get("score"),
            )
            for a in row.quiz_attempts or ()
        ),
        unit_quiz_completed=row.unit_quiz_completed,
        unit_quiz_passed=row.unit_quiz_passed,
        all_videos_watched=row.all_videos_watched,
    )


def _copy_entry_to_row(entry: UnitProgress, row: UnitProgressRow) -> None:
    row.status = entry.status.value
    row.unlocked = entry.unlocked
    row.unlocked_at = entry.unlocked_at
    row.videos_watched = [
        {
            "video_id": str(w.video_id),
            "watch_time": w.watch_time,
            "completed": w.completed,
        }
        for w in entry.videos_watched
    ]
    row.quiz_attempts = [
        {
            "quiz_id": str(a.quiz_id) if a.quiz_id else None,
            "passed": a.passed,
            "attempted_at": a.attempted_at,
            "score": a.score,
        }
        for a in entry.quiz_attempts
    ]
    row.unit_quiz_completed = entry.unit_quiz_completed
    row.unit_quiz_passed = entry.unit_quiz_passed
    row.all_videos_watched = entry.all_videos_watched
