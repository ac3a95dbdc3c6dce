"""Lesson completion: ordered, idempotent, exactly-once per (user, lesson).

A completion is accepted only for the first lesson of the course that is not
yet completed. Replaying a completed lesson is a no-op that reports current
progress. The ``lesson_completions`` uniqueness constraint on (user, lesson)
decides concurrent attempts; losing that race is reconciled, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.certificates.service import CertificateService, certificate_to_dict
from academy.config import get_settings
from academy.courses.identity import LessonRef, same_lesson
from academy.courses.progress import (
    ProgressState,
    load_completion_set,
    load_progress_universe,
    recompute_enrollment_progress,
)
from academy.courses.service import get_enrollment, resolve_course, resolve_lesson
from academy.db.models import Enrollment, Lesson, LessonCompletion
from academy.errors import (
    AcademyError,
    AuthorizationError,
    OrderingViolation,
    ValidationError,
)
from academy.gamification.achievement_service import award_achievement
from academy.gamification.streak_service import update_streak
from academy.gamification.xp_service import grant_xp

logger = structlog.get_logger()


@dataclass
class CompletionResult:
    progress_percentage: int
    course_completed: bool
    already_completed: bool = False
    xp_awarded: int = 0
    missing_lessons: list[str] = field(default_factory=list)
    certificate: dict[str, Any] | None = None
    certificate_error: str | None = None


class LessonCompletionService:
    """Ordering and idempotency authority for lesson completions."""

    def __init__(self, db: AsyncSession, certificates: CertificateService | None = None) -> None:
        self.db = db
        self.certificates = certificates

    async def complete(
        self,
        user_id: str,
        lesson: Lesson,
        enrollment: Enrollment,
        xp_earned: int | None = None,
        today: date | None = None,
    ) -> CompletionResult:
        """Record completion of ``lesson`` under ``enrollment``."""
        if enrollment.user_id != user_id:
            msg = "Enrollment not found for user"
            raise AuthorizationError(msg)
        if lesson.course_id != enrollment.course_id:
            msg = "Lesson does not belong to enrolled course"
            raise ValidationError(msg)

        if xp_earned is not None:
            xp = xp_earned
        elif lesson.xp_reward is not None:
            xp = lesson.xp_reward
        else:
            xp = get_settings().default_lesson_xp
        if xp < 0:
            msg = "xp_earned must be non-negative"
            raise ValidationError(msg)

        universe = [LessonRef.of(row) for row in await load_progress_universe(self.db, enrollment.course_id)]
        target = LessonRef.of(lesson)
        target_index = next((i for i, ref in enumerate(universe) if same_lesson(ref, target)), None)
        if target_index is None:
            msg = "Lesson does not belong to enrolled course"
            raise ValidationError(msg)

        completed = await load_completion_set(self.db, enrollment.id)
        if target in completed:
            state = await recompute_enrollment_progress(self.db, enrollment)
            return self._result(state, already_completed=True)

        next_pending = next((i for i, ref in enumerate(universe) if ref not in completed), len(universe) - 1)
        if target_index != next_pending:
            logger.info(
                "lesson_out_of_order",
                user_id=user_id,
                lesson_id=lesson.id,
                expected=universe[next_pending].slug,
            )
            msg = "Complete lessons in order to continue"
            raise OrderingViolation(msg)

        recorded = await self._record(user_id, lesson, enrollment, xp)
        state = await recompute_enrollment_progress(self.db, enrollment)
        if not recorded:
            return self._result(state, already_completed=True)

        # Streak first: it compares against the previous activity date that grant_xp overwrites
        await update_streak(self.db, user_id, today=today)
        granted = await grant_xp(
            self.db,
            user_id,
            xp,
            source="lesson",
            idempotency_key=f"lesson:{lesson.id}:{user_id}",
            description=f"Completed: {lesson.title}",
            today=today,
        )
        await award_achievement(self.db, user_id, "first_lesson")
        if state.course_completed:
            await award_achievement(self.db, user_id, "course_complete")

        logger.info(
            "lesson_completed",
            user_id=user_id,
            lesson_id=lesson.id,
            enrollment_id=enrollment.id,
            progress=state.progress_percentage,
        )
        return self._result(state, xp_awarded=xp if granted else 0)

    async def _record(self, user_id: str, lesson: Lesson, enrollment: Enrollment, xp: int) -> bool:
        """Insert the completion row.

        Returns True when the caller should run the post-completion steps:
        either the row is new, or an existing row was moved over from a stale
        enrollment. Returns False when the same enrollment already holds it.
        """
        try:
            async with self.db.begin_nested():
                self.db.add(
                    LessonCompletion(
                        user_id=user_id,
                        lesson_id=lesson.id,
                        enrollment_id=enrollment.id,
                        xp_earned=xp,
                    )
                )
            return True
        except IntegrityError:
            pass

        result = await self.db.execute(
            select(LessonCompletion).where(
                LessonCompletion.user_id == user_id,
                LessonCompletion.lesson_id == lesson.id,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is None:
            raise ValidationError("Could not record lesson completion")

        if existing.enrollment_id == enrollment.id:
            logger.info("completion_race_recovered", user_id=user_id, lesson_id=lesson.id)
            return False

        logger.warning(
            "completion_reconciled",
            user_id=user_id,
            lesson_id=lesson.id,
            stale_enrollment_id=existing.enrollment_id,
            enrollment_id=enrollment.id,
        )
        stale_enrollment_id = existing.enrollment_id
        existing.enrollment_id = enrollment.id
        existing.xp_earned = xp
        await self.db.flush()

        stale = await self.db.get(Enrollment, stale_enrollment_id)
        if stale is not None:
            await recompute_enrollment_progress(self.db, stale)
        return True

    @staticmethod
    def _result(state: ProgressState, **kwargs: Any) -> CompletionResult:  # noqa: ANN401
        return CompletionResult(
            progress_percentage=state.progress_percentage,
            course_completed=state.course_completed,
            missing_lessons=state.missing_lessons,
            **kwargs,
        )

    async def complete_lesson(
        self,
        user_id: str,
        lesson_ref: str | None,
        course_ref: str,
        xp_earned: int | None = None,
        lesson_slug: str | None = None,
        issue_certificate_on_complete: bool = False,
        today: date | None = None,
    ) -> CompletionResult:
        """Resolve references, pick the enrollment and complete the lesson.

        A lesson that belongs to another course the user is enrolled in is
        completed under that course's enrollment instead.
        """
        course = await resolve_course(self.db, course_ref)
        lesson = await resolve_lesson(self.db, lesson_ref, course.id, lesson_slug)

        enrollment = await get_enrollment(self.db, user_id, course.id)
        if lesson.course_id != course.id:
            lesson_enrollment = await get_enrollment(self.db, user_id, lesson.course_id)
            if lesson_enrollment is None:
                msg = "Lesson does not belong to this course"
                raise ValidationError(msg)
            logger.info(
                "completion_retargeted",
                user_id=user_id,
                lesson_id=lesson.id,
                requested_course_id=course.id,
                course_id=lesson.course_id,
            )
            enrollment = lesson_enrollment

        if enrollment is None:
            msg = "Enrollment required"
            raise AuthorizationError(msg)

        result = await self.complete(user_id, lesson, enrollment, xp_earned=xp_earned, today=today)

        if not issue_certificate_on_complete:
            result.missing_lessons = []
        elif result.course_completed and self.certificates is not None and self.certificates.custodial_enabled:
            try:
                certificate = await self.certificates.issue_custodial(user_id, enrollment.course_id)
                result.certificate = certificate_to_dict(certificate)
            except AcademyError as e:
                # The completion stands even when issuance fails
                logger.warning("certificate_on_complete_failed", user_id=user_id, error=e.detail)
                result.certificate_error = e.detail
        return result
