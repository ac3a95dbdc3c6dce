"""Lesson identity: lessons and completions match by id or by slug."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol


class _HasIdentity(Protocol):
    id: str
    slug: str


@dataclass(frozen=True)
class LessonRef:
    """A lesson identity. Older completion rows may only agree with a lesson on slug."""

    id: str | None
    slug: str | None = None

    @classmethod
    def of(cls, lesson: _HasIdentity) -> LessonRef:
        return cls(id=lesson.id, slug=lesson.slug)


class CompletionSet:
    """Completed lesson identities with a single id-then-slug membership test."""

    def __init__(self, refs: Iterable[LessonRef] = ()) -> None:
        self._ids: set[str] = set()
        self._slugs: set[str] = set()
        for ref in refs:
            self.add(ref)

    def add(self, ref: LessonRef) -> None:
        if ref.id:
            self._ids.add(ref.id)
        if ref.slug:
            self._slugs.add(ref.slug)

    def __contains__(self, ref: object) -> bool:
        if not isinstance(ref, LessonRef):
            return False
        if ref.id and ref.id in self._ids:
            return True
        return bool(ref.slug) and ref.slug in self._slugs

    def matched(self, universe: Iterable[LessonRef]) -> list[LessonRef]:
        return [ref for ref in universe if ref in self]

    def missing(self, universe: Iterable[LessonRef]) -> list[LessonRef]:
        return [ref for ref in universe if ref not in self]


def same_lesson(a: LessonRef, b: LessonRef) -> bool:
    """True if two references name the same lesson by id, else by slug."""
    if a.id and b.id and a.id == b.id:
        return True
    return bool(a.slug) and a.slug == b.slug
