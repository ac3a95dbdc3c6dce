"""Domain error taxonomy.

Every error carries the HTTP status it maps to so the global handler can
render it without a lookup table. Uniqueness races that get reconciled are
not errors and never show up here; they are logged where they happen.
"""

from __future__ import annotations

from typing import Any


class AcademyError(Exception):
    """Base class for errors surfaced to callers."""

    status_code: int = 400

    def __init__(self, detail: str, **extra: Any) -> None:  # noqa: ANN401
        super().__init__(detail)
        self.detail = detail
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.detail, **self.extra}


class ValidationError(AcademyError):
    """Missing or malformed identifiers. Caller's fault, never retried."""

    status_code = 400


class NotFoundError(AcademyError):
    status_code = 404


class OrderingViolation(AcademyError):
    """A lesson was completed out of sequence."""

    status_code = 409


class AuthorizationError(AcademyError):
    """The enrollment or course does not belong to the requesting user."""

    status_code = 403


class PreconditionError(AcademyError):
    """Wallet not linked, course not finished, and similar remediable states."""

    status_code = 409

    def __init__(self, detail: str, missing_lessons: list[str] | None = None, **extra: Any) -> None:  # noqa: ANN401
        if missing_lessons is not None:
            extra["missing_lessons"] = missing_lessons
        super().__init__(detail, **extra)
        self.missing_lessons = missing_lessons or []


class ConflictError(AcademyError):
    status_code = 409


class ExternalServiceError(AcademyError):
    """Datastore or ledger unavailable. Retryable."""

    status_code = 503


class LedgerRejection(AcademyError):
    """The ledger rejected the transaction. Nothing was persisted."""

    status_code = 400


class IssuerKeyError(AcademyError):
    """Issuer key material is missing or malformed."""

    status_code = 500
