"""Progress aggregation for an enrollment.

The progress universe is the course's published lessons in ``order_index``
order. A course with no published lessons falls back to all of its lessons.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.courses.identity import CompletionSet, LessonRef
from academy.db.models import Enrollment, Lesson, LessonCompletion

logger = structlog.get_logger()


@dataclass(frozen=True)
class ProgressState:
    progress_percentage: int
    course_completed: bool
    missing_lessons: list[str] = field(default_factory=list)


async def load_progress_universe(db: AsyncSession, course_id: str) -> list[Lesson]:
    """Ordered lessons that count toward progress for a course."""
    result = await db.execute(
        select(Lesson)
        .where(Lesson.course_id == course_id, Lesson.is_published.is_(True))
        .order_by(Lesson.order_index, Lesson.slug)
    )
    lessons = list(result.scalars().all())
    if lessons:
        return lessons

    result = await db.execute(
        select(Lesson).where(Lesson.course_id == course_id).order_by(Lesson.order_index, Lesson.slug)
    )
    return list(result.scalars().all())


async def load_completion_set(db: AsyncSession, enrollment_id: str) -> CompletionSet:
    """Completed lesson identities (id and slug) recorded under an enrollment."""
    result = await db.execute(
        select(LessonCompletion.lesson_id, Lesson.slug)
        .join(Lesson, Lesson.id == LessonCompletion.lesson_id, isouter=True)
        .where(LessonCompletion.enrollment_id == enrollment_id)
    )
    return CompletionSet(LessonRef(id=lesson_id, slug=slug) for lesson_id, slug in result.all())


def compute_percentage(universe: list[LessonRef], completed: CompletionSet) -> int:
    """``round(100 * matched / total)``, capped at 99 until every lesson is matched.

    An empty universe is 0%.
    """
    total = len(universe)
    if total == 0:
        return 0
    matched = len(completed.matched(universe))
    if matched < total:
        return min(99, round(100 * matched / total))
    return 100


async def compute_progress(db: AsyncSession, enrollment: Enrollment) -> ProgressState:
    """Read-only progress for an enrollment."""
    universe = [LessonRef.of(lesson) for lesson in await load_progress_universe(db, enrollment.course_id)]
    completed = await load_completion_set(db, enrollment.id)
    missing = completed.missing(universe)
    return ProgressState(
        progress_percentage=compute_percentage(universe, completed),
        course_completed=bool(universe) and not missing,
        missing_lessons=[ref.slug or ref.id or "" for ref in missing],
    )


async def recompute_enrollment_progress(
    db: AsyncSession,
    enrollment: Enrollment,
    now: datetime | None = None,
) -> ProgressState:
    """Recompute and store an enrollment's progress.

    ``completed_at`` is stamped the first time progress reaches 100 and kept
    on later recomputations. It is cleared again if progress drops below 100.
    """
    state = await compute_progress(db, enrollment)
    enrollment.progress_percentage = state.progress_percentage
    if state.course_completed:
        if enrollment.completed_at is None:
            enrollment.completed_at = now or datetime.now(timezone.utc)
            logger.info("enrollment_completed", enrollment_id=enrollment.id, user_id=enrollment.user_id)
    elif enrollment.completed_at is not None:
        logger.info(
            "enrollment_reopened",
            enrollment_id=enrollment.id,
            progress_percentage=state.progress_percentage,
        )
        enrollment.completed_at = None
    await db.flush()
    return state
