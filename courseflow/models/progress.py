"""Per-(student, course) progress records and their transition rules.

A StudentProgress record is the mutable heart of the unlock engine, but the
dataclasses here are frozen: every change produces a new value through
``apply_patch``, which is also where illegal transitions are rejected.
Both progress stores (in-memory and PostgreSQL) funnel entry updates
through it, so the rules hold no matter which caller writes.

Transition rules for a unit entry:

  unlocked           False -> True only (unlocking is monotonic)
  unit_quiz_passed   False -> True only (a pass is never taken back)
  status             locked -> in-progress -> completed, never backwards
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from enum import Enum
from uuid import UUID


class UnitStatus(str, Enum):
    LOCKED = "locked"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


_STATUS_RANK = {
    UnitStatus.LOCKED: 0,
    UnitStatus.IN_PROGRESS: 1,
    UnitStatus.COMPLETED: 2,
}

_MONOTONIC_FLAGS = ("unlocked", "unit_quiz_passed")


class InvalidTransitionError(ValueError):
    """A patch tried to move a unit entry backwards."""


@dataclass(frozen=True, slots=True)
class VideoWatch:
    video_id: UUID
    watch_time: int = 0  # seconds
    completed: bool = False


@dataclass(frozen=True, slots=True)
class QuizAttempt:
    quiz_id: UUID | None
    passed: bool
    attempted_at: int
    score: int | None = None


@dataclass(frozen=True, slots=True)
class UnitProgress:
    unit_id: UUID
    status: UnitStatus = UnitStatus.LOCKED
    unlocked: bool = False
    unlocked_at: int | None = None
    videos_watched: tuple[VideoWatch, ...] = ()
    quiz_attempts: tuple[QuizAttempt, ...] = ()
    unit_quiz_completed: bool = False
    unit_quiz_passed: bool = False
    all_videos_watched: bool = False

    def watch_for(self, video_id: UUID) -> VideoWatch | None:
        for watch in self.videos_watched:
            if watch.video_id == video_id:
                return watch
        return None


_PATCHABLE = frozenset(f.name for f in fields(UnitProgress)) - {"unit_id"}


def apply_patch(entry: UnitProgress, patch: Mapping[str, object]) -> UnitProgress:
    """Merge ``patch`` into ``entry`` and return the new entry.

    Raises ValueError for unknown fields and InvalidTransitionError for any
    backwards move of ``unlocked``, ``unit_quiz_passed`` or ``status``.
    """
    unknown = set(patch) - _PATCHABLE
    if unknown:
        raise ValueError(f"unknown unit progress fields: {sorted(unknown)}")

    changes = dict(patch)
    if "status" in changes:
        changes["status"] = UnitStatus(changes["status"])
        new_status = changes["status"]
        if _STATUS_RANK[new_status] < _STATUS_RANK[entry.status]:
            raise InvalidTransitionError(
                f"unit {entry.unit_id}: "
                f"status {entry.status.value} -> {new_status.value}"
            )

    for flag in _MONOTONIC_FLAGS:
        if flag in changes and getattr(entry, flag) and not changes[flag]:
            raise InvalidTransitionError(f"unit {entry.unit_id}: {flag} True -> False")

    return replace(entry, **changes)


@dataclass(frozen=True, slots=True)
class StudentProgress:
    """One record per (student, course) pair."""

    student_id: UUID
    course_id: UUID
    units: tuple[UnitProgress, ...] = ()  # insertion order
    unlocked_videos: frozenset[UUID] = frozenset()
    completed_reading_materials: frozenset[UUID] = frozenset()

    def entry(self, unit_id: UUID) -> UnitProgress | None:
        for unit in self.units:
            if unit.unit_id == unit_id:
                return unit
        return None

    def with_entry(self, entry: UnitProgress) -> StudentProgress:
        """Replace the entry for ``entry.unit_id`` in place, or append it."""
        units = list(self.units)
        for i, existing in enumerate(units):
            if existing.unit_id == entry.unit_id:
                units[i] = entry
                break
        else:
            units.append(entry)
        return replace(self, units=tuple(units))

    def without_entries(self, unit_ids: frozenset[UUID]) -> StudentProgress:
        return replace(
            self, units=tuple(u for u in self.units if u.unit_id not in unit_ids)
        )

    def unlocked_unit_ids(self) -> frozenset[UUID]:
        return frozenset(u.unit_id for u in self.units if u.unlocked)
