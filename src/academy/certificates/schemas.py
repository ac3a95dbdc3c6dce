"""Pydantic request/response models for certificate endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class CertificateResponse(BaseModel):
    id: str
    course_id: str
    wallet_address: str
    mint_address: str
    signature: str
    network: str
    issuance_mode: str
    issued_at: str | None = None
    course_slug: str | None = None
    course_title: str | None = None


class CertificateListResponse(BaseModel):
    certificates: list[CertificateResponse]


class PrepareRequest(BaseModel):
    course_ref: str = Field(min_length=1)
    wallet_address: str | None = None


class PrepareResponse(BaseModel):
    ok: bool = True
    already_issued: bool
    serialized_transaction: str | None = None
    mint_address: str | None = None
    certificate: CertificateResponse | None = None


class ConfirmRequest(BaseModel):
    course_ref: str = Field(min_length=1)
    mint_address: str = Field(min_length=1)
    signature: str = Field(min_length=1)
    lesson_completion_id: str | None = None


class IssueRequest(BaseModel):
    course_ref: str = Field(min_length=1)


class CertificateEnvelope(BaseModel):
    ok: bool = True
    created: bool = False
    certificate: CertificateResponse


class CertificateStateResponse(BaseModel):
    course_id: str
    state: str
