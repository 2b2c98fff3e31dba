"""Read projection: the course as one student sees it.

Read-only.  Joins the catalog (units with their videos, quizzes, quiz pools
and reading materials) against the student's progress record:

  - a locked unit is a placeholder: its status and totals, no content
  - an unlocked unit lists only the videos in the student's effective
    unlocked set, i.e. the stored ``unlocked_videos`` plus the first video
    of every unlocked unit
  - a student who is enrolled but has no progress record yet sees every
    unit locked (``has_progress=False``)
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from courseflow.models.course import Course, UnitContent, Video
from courseflow.models.progress import StudentProgress, UnitProgress, UnitStatus
from courseflow.repos.catalog_repo import CatalogRepo
from courseflow.repos.enrollment_repo import EnrollmentRepo
from courseflow.repos.progress_repo import ProgressRepo
from courseflow.services.catalog_service import CourseNotFoundError
from courseflow.services.enrollment_service import NotEnrolledError


@dataclass(frozen=True, slots=True)
class VideoView:
    id: UUID
    title: str
    sequence: int
    url: str
    duration: int | None
    watch_time: int = 0
    completed: bool = False


@dataclass(frozen=True, slots=True)
class QuizView:
    id: UUID
    title: str
    passed: bool = False


@dataclass(frozen=True, slots=True)
class QuizPoolView:
    id: UUID
    title: str
    questions_per_attempt: int


@dataclass(frozen=True, slots=True)
class ReadingMaterialView:
    id: UUID
    title: str
    content_type: str
    completed: bool = False


@dataclass(frozen=True, slots=True)
class UnitView:
    id: UUID
    order: int
    title: str
    description: str
    status: UnitStatus
    unlocked: bool
    unit_quiz_passed: bool = False
    all_videos_watched: bool = False
    videos: tuple[VideoView, ...] = ()
    quizzes: tuple[QuizView, ...] = ()
    quiz_pools: tuple[QuizPoolView, ...] = ()
    reading_materials: tuple[ReadingMaterialView, ...] = ()
    videos_completed: int = 0
    total_videos: int = 0
    reading_materials_completed: int = 0
    total_reading_materials: int = 0
    quizzes_passed: int = 0
    total_quizzes: int = 0


@dataclass(frozen=True, slots=True)
class StudentView:
    student_id: UUID
    course_id: UUID
    course_title: str
    has_progress: bool
    units: tuple[UnitView, ...] = ()
    course_videos: tuple[VideoView, ...] = ()


def effective_unlocked_videos(
    progress: StudentProgress, contents: list[UnitContent]
) -> frozenset[UUID]:
    first_videos = {c.unit.id: c.videos[0].id for c in contents if c.videos}
    derived = {
        first_videos[unit_id]
        for unit_id in progress.unlocked_unit_ids()
        if unit_id in first_videos
    }
    return progress.unlocked_videos | derived


def build_student_view(
    student_id: UUID,
    course: Course,
    contents: list[UnitContent],
    course_videos: list[Video],
    progress: StudentProgress | None,
) -> StudentView:
    if progress is None:
        return StudentView(
            student_id=student_id,
            course_id=course.id,
            course_title=course.title,
            has_progress=False,
            units=tuple(_placeholder(c) for c in contents),
        )

    unlocked_videos = effective_unlocked_videos(progress, contents)
    units = []
    for content in contents:
        entry = progress.entry(content.unit.id)
        if entry is None or not entry.unlocked:
            units.append(_placeholder(content, entry))
        else:
            units.append(
                _unlocked_unit(
                    content,
                    entry,
                    unlocked_videos,
                    progress.completed_reading_materials,
                )
            )

    return StudentView(
        student_id=student_id,
        course_id=course.id,
        course_title=course.title,
        has_progress=True,
        units=tuple(units),
        course_videos=tuple(
            _video_view(v, None) for v in course_videos if v.id in unlocked_videos
        ),
    )


def _placeholder(content: UnitContent, entry: UnitProgress | None = None) -> UnitView:
    unit = content.unit
    return UnitView(
        id=unit.id,
        order=unit.order,
        title=unit.title,
        description=unit.description,
        status=UnitStatus.LOCKED,
        unlocked=False,
        unit_quiz_passed=entry.unit_quiz_passed if entry else False,
        total_videos=len(content.videos),
        total_reading_materials=len(content.reading_materials),
        total_quizzes=len(content.quizzes),
    )


def _unlocked_unit(
    content: UnitContent,
    entry: UnitProgress,
    unlocked_videos: frozenset[UUID],
    completed_materials: frozenset[UUID],
) -> UnitView:
    videos = tuple(
        _video_view(v, entry) for v in content.videos if v.id in unlocked_videos
    )
    passed_quiz_ids = {a.quiz_id for a in entry.quiz_attempts if a.passed}
    quizzes = tuple(
        QuizView(id=q.id, title=q.title, passed=q.id in passed_quiz_ids)
        for q in content.quizzes
    )
    materials = tuple(
        ReadingMaterialView(
            id=m.id,
            title=m.title,
            content_type=m.content_type,
            completed=m.id in completed_materials,
        )
        for m in content.reading_materials
    )
    unit_video_ids = {v.id for v in content.videos}
    return UnitView(
        id=content.unit.id,
        order=content.unit.order,
        title=content.unit.title,
        description=content.unit.description,
        status=entry.status,
        unlocked=True,
        unit_quiz_passed=entry.unit_quiz_passed,
        all_videos_watched=entry.all_videos_watched,
        videos=videos,
        quizzes=quizzes,
        quiz_pools=tuple(
            QuizPoolView(
                id=p.id, title=p.title, questions_per_attempt=p.questions_per_attempt
            )
            for p in content.quiz_pools
        ),
        reading_materials=materials,
        videos_completed=sum(
            1
            for w in entry.videos_watched
            if w.completed and w.video_id in unit_video_ids
        ),
        total_videos=len(content.videos),
        reading_materials_completed=sum(1 for m in materials if m.completed),
        total_reading_materials=len(materials),
        quizzes_passed=sum(1 for q in quizzes if q.passed),
        total_quizzes=len(quizzes),
    )


def _video_view(video: Video, entry: UnitProgress | None) -> VideoView:
    watch = entry.watch_for(video.id) if entry is not None else None
    return VideoView(
        id=video.id,
        title=video.title,
        sequence=video.sequence,
        url=video.url,
        duration=video.duration,
        watch_time=watch.watch_time if watch else 0,
        completed=watch.completed if watch else False,
    )


class StudentViewReader:
    def __init__(
        self,
        catalog: CatalogRepo,
        enrollments: EnrollmentRepo,
        store: ProgressRepo,
    ) -> None:
        self._catalog = catalog
        self._enrollments = enrollments
        self._store = store

    async def get_student_view(self, student_id: UUID, course_id: UUID) -> StudentView:
        course = await self._catalog.get_course(course_id)
        if course is None:
            raise CourseNotFoundError(str(course_id))
        if not await self._enrollments.is_enrolled(course_id, student_id):
            raise NotEnrolledError(str(course_id))

        contents = []
        for unit in await self._catalog.list_units(course_id):
            content = await self._catalog.unit_content(unit.id)
            if content is not None:
                contents.append(content)
        course_videos = await self._catalog.list_course_videos(course_id)
        progress = await self._store.get(student_id, course_id)
        return build_student_view(student_id, course, contents, course_videos, progress)
