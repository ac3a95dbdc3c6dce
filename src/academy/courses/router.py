"""Course endpoints: enrollment, lesson completion and progress."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user_id
from academy.certificates.minting import Ledger
from academy.certificates.router import get_ledger
from academy.certificates.service import CertificateService
from academy.courses.completion import LessonCompletionService
from academy.courses.progress import compute_progress
from academy.courses.schemas import (
    CompleteLessonRequest,
    CompleteLessonResponse,
    CourseProgressResponse,
    EnrollmentResponse,
    EnrollRequest,
)
from academy.courses.service import enroll, get_enrollment, resolve_course
from academy.database import get_session
from academy.errors import AuthorizationError

router = APIRouter(prefix="/api/v1", tags=["Courses"])


@router.post("/enrollments", response_model=EnrollmentResponse)
async def enroll_in_course(
    body: EnrollRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> EnrollmentResponse:
    """Enroll in a course by id or slug. Idempotent."""
    enrollment, created = await enroll(db, user_id, body.course_ref)
    await db.commit()
    return EnrollmentResponse(
        id=enrollment.id,
        course_id=enrollment.course_id,
        progress_percentage=enrollment.progress_percentage,
        enrolled_at=enrollment.enrolled_at,
        completed_at=enrollment.completed_at,
        created=created,
    )


@router.post("/lessons/complete", response_model=CompleteLessonResponse)
async def complete_lesson(
    body: CompleteLessonRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    ledger: Ledger = Depends(get_ledger),
) -> CompleteLessonResponse:
    """Complete the next lesson of a course."""
    svc = LessonCompletionService(db, certificates=CertificateService(db, ledger=ledger))
    result = await svc.complete_lesson(
        user_id,
        body.lesson_ref,
        body.course_ref,
        xp_earned=body.xp_earned,
        lesson_slug=body.lesson_slug,
        issue_certificate_on_complete=body.issue_certificate_on_complete,
    )
    await db.commit()

    missing = None
    if body.issue_certificate_on_complete and not result.course_completed:
        missing = result.missing_lessons
    return CompleteLessonResponse(
        progress_percentage=result.progress_percentage,
        course_completed=result.course_completed,
        already_completed=result.already_completed,
        xp_awarded=result.xp_awarded,
        certificate=result.certificate,
        certificate_error=result.certificate_error,
        missing_lesson_slugs=missing,
    )


@router.get("/courses/{course_ref}/progress", response_model=CourseProgressResponse)
async def course_progress(
    course_ref: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> CourseProgressResponse:
    """Current progress in a course, with the lessons still to do."""
    course = await resolve_course(db, course_ref)
    enrollment = await get_enrollment(db, user_id, course.id)
    if enrollment is None:
        msg = "Enrollment required"
        raise AuthorizationError(msg)
    state = await compute_progress(db, enrollment)
    return CourseProgressResponse(
        course_id=course.id,
        progress_percentage=state.progress_percentage,
        course_completed=state.course_completed,
        missing_lessons=state.missing_lessons,
    )
