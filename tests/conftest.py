from __future__ import annotations

import sys
from collections.abc import Iterable, Mapping
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from courseflow.main import app
from courseflow.models.progress import StudentProgress, UnitProgress
from courseflow.repos.catalog_repo import InMemoryCatalogRepo, catalog_repo
from courseflow.repos.enrollment_repo import InMemoryEnrollmentRepo, enrollment_repo
from courseflow.repos.progress_repo import (
    InMemoryProgressRepo,
    TransientStoreError,
    progress_repo,
)
from courseflow.services import token_service
from courseflow.services.cache import cache_service
from courseflow.services.unlock_service import UnlockPropagator

# Ensure repo root is on sys.path so `import courseflow` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_catalog_state() -> None:
    """Clear the module-level catalog between tests."""
    catalog_repo._courses.clear()
    catalog_repo._units.clear()
    catalog_repo._videos.clear()
    catalog_repo._quizzes.clear()
    catalog_repo._quiz_pools.clear()
    catalog_repo._reading_materials.clear()


@pytest.fixture(autouse=True)
def reset_enrollment_state() -> None:
    enrollment_repo._by_course.clear()


@pytest.fixture(autouse=True)
def reset_progress_state() -> None:
    progress_repo._store.clear()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache between tests."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    user_id: UUID | None = None,
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(
        sub=str(user_id or uuid4()), roles=roles
    )


def auth(token: str | None) -> dict[str, str]:
    if token is None:
        return {}
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student_id() -> UUID:
    return uuid4()


@pytest.fixture
def student_token(student_id: UUID) -> str:
    return mint_token(student_id, roles=["student"])


@pytest.fixture
def instructor_token() -> str:
    return mint_token(roles=["instructor"])


@pytest.fixture
def grader_token() -> str:
    return mint_token(roles=["grader"])


@pytest.fixture
def admin_token() -> str:
    return mint_token(roles=["admin"])


# ---------------------------------------------------------------------------
# Service-level fixtures: fresh repos, no HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def catalog() -> InMemoryCatalogRepo:
    return InMemoryCatalogRepo()


@pytest.fixture
def enrollments() -> InMemoryEnrollmentRepo:
    return InMemoryEnrollmentRepo()


@pytest.fixture
def store() -> InMemoryProgressRepo:
    return InMemoryProgressRepo()


@pytest.fixture
def propagator(
    catalog: InMemoryCatalogRepo,
    enrollments: InMemoryEnrollmentRepo,
    store: InMemoryProgressRepo,
) -> UnlockPropagator:
    return UnlockPropagator(catalog, enrollments, store)


class FlakyProgressRepo:
    """Wraps a progress repo and fails every write for selected students."""

    def __init__(
        self,
        inner: InMemoryProgressRepo,
        failing: Iterable[UUID],
        error: type[Exception] = TransientStoreError,
    ) -> None:
        self._inner = inner
        self.failing = set(failing)
        self.error = error

    def _check(self, student_id: UUID) -> None:
        if student_id in self.failing:
            raise self.error(f"simulated write failure for {student_id}")

    async def get(self, student_id: UUID, course_id: UUID) -> StudentProgress | None:
        return await self._inner.get(student_id, course_id)

    async def get_many(
        self, course_id: UUID, student_ids: Iterable[UUID]
    ) -> dict[UUID, StudentProgress]:
        return await self._inner.get_many(course_id, student_ids)

    async def list_by_course(self, course_id: UUID) -> list[StudentProgress]:
        return await self._inner.list_by_course(course_id)

    async def upsert_unit_entry(
        self,
        student_id: UUID,
        course_id: UUID,
        unit_id: UUID,
        patch: Mapping[str, object],
    ) -> UnitProgress:
        self._check(student_id)
        return await self._inner.upsert_unit_entry(
            student_id, course_id, unit_id, patch
        )

    async def add_unlocked_video(
        self, student_id: UUID, course_id: UUID, video_id: UUID
    ) -> bool:
        self._check(student_id)
        return await self._inner.add_unlocked_video(student_id, course_id, video_id)

    async def unlock_unit(
        self,
        student_id: UUID,
        course_id: UUID,
        unit_id: UUID,
        first_video_id: UUID | None = None,
    ) -> bool:
        self._check(student_id)
        return await self._inner.unlock_unit(
            student_id, course_id, unit_id, first_video_id
        )

    async def remove_unit_entries(
        self, student_id: UUID, course_id: UUID, unit_ids: frozenset[UUID]
    ) -> int:
        self._check(student_id)
        return await self._inner.remove_unit_entries(student_id, course_id, unit_ids)

    async def remove_unlocked_video(self, course_id: UUID, video_id: UUID) -> int:
        return await self._inner.remove_unlocked_video(course_id, video_id)

    async def add_completed_reading_material(
        self, student_id: UUID, course_id: UUID, material_id: UUID
    ) -> bool:
        self._check(student_id)
        return await self._inner.add_completed_reading_material(
            student_id, course_id, material_id
        )
