"""Course lookup and enrollment."""

from __future__ import annotations

import logging

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db.models import Course, Enrollment, Lesson
from academy.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


async def resolve_course(db: AsyncSession, course_ref: str) -> Course:
    """Find a course by id, falling back to slug."""
    if not course_ref:
        msg = "Course reference is required"
        raise ValidationError(msg)
    course = await db.get(Course, course_ref)
    if course is None:
        result = await db.execute(select(Course).where(Course.slug == course_ref))
        course = result.scalar_one_or_none()
    if course is None:
        msg = "Course not found"
        raise NotFoundError(msg)
    return course


async def resolve_lesson(
    db: AsyncSession,
    lesson_ref: str | None,
    course_id: str,
    lesson_slug: str | None = None,
) -> Lesson:
    """Find a lesson by id (any course), else by slug within ``course_id``."""
    if not lesson_ref and not lesson_slug:
        msg = "Lesson reference is required"
        raise ValidationError(msg)

    if lesson_ref:
        lesson = await db.get(Lesson, lesson_ref)
        if lesson is not None:
            return lesson

    slugs = [s for s in (lesson_slug, lesson_ref) if s]
    result = await db.execute(
        select(Lesson).where(Lesson.course_id == course_id, or_(*(Lesson.slug == s for s in slugs)))
    )
    lesson = result.scalars().first()
    if lesson is None:
        msg = "Lesson not found in this course"
        raise ValidationError(msg)
    return lesson


async def get_enrollment(db: AsyncSession, user_id: str, course_id: str) -> Enrollment | None:
    result = await db.execute(
        select(Enrollment).where(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
    )
    return result.scalar_one_or_none()


async def enroll(db: AsyncSession, user_id: str, course_ref: str) -> tuple[Enrollment, bool]:
    """Enroll a user in a course. Returns (enrollment, created).

    Enrolling twice returns the existing enrollment.
    """
    course = await resolve_course(db, course_ref)
    existing = await get_enrollment(db, user_id, course.id)
    if existing is not None:
        return existing, False

    enrollment = Enrollment(user_id=user_id, course_id=course.id, progress_percentage=0)
    try:
        async with db.begin_nested():
            db.add(enrollment)
    except IntegrityError:
        logger.info("Enrollment race for user %s course %s recovered", user_id, course.id)
        winner = await get_enrollment(db, user_id, course.id)
        if winner is None:
            raise
        return winner, False

    logger.info("User %s enrolled in course %s", user_id, course.slug)
    return enrollment, True
