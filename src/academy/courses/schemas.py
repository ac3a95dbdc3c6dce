"""Pydantic request/response models for course endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class EnrollRequest(BaseModel):
    course_ref: str = Field(min_length=1)


class EnrollmentResponse(BaseModel):
    id: str
    course_id: str
    progress_percentage: int
    enrolled_at: datetime | None = None
    completed_at: datetime | None = None
    created: bool = False


class CompleteLessonRequest(BaseModel):
    lesson_ref: str = Field(min_length=1)
    course_ref: str = Field(min_length=1)
    lesson_slug: str | None = None
    xp_earned: int | None = None
    issue_certificate_on_complete: bool = False


class CompleteLessonResponse(BaseModel):
    ok: bool = True
    progress_percentage: int
    course_completed: bool
    already_completed: bool = False
    xp_awarded: int = 0
    certificate: dict | None = None
    certificate_error: str | None = None
    missing_lesson_slugs: list[str] | None = None


class CourseProgressResponse(BaseModel):
    course_id: str
    progress_percentage: int
    course_completed: bool
    missing_lessons: list[str] = []
