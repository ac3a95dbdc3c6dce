"""Certificate endpoints: list, state, prepare/confirm and custodial issue."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user_id
from academy.certificates.minting import Ledger
from academy.certificates.schemas import (
    CertificateEnvelope,
    CertificateListResponse,
    CertificateResponse,
    CertificateStateResponse,
    ConfirmRequest,
    IssueRequest,
    PrepareRequest,
    PrepareResponse,
)
from academy.certificates.service import CertificateService, certificate_to_dict
from academy.config import get_settings
from academy.courses.service import resolve_course
from academy.database import get_session
from academy.ledger.client import LedgerClient

router = APIRouter(prefix="/api/v1/certificates", tags=["Certificates"])


def get_ledger() -> Ledger:
    """Ledger client dependency (overridden in tests)."""
    return LedgerClient.from_settings(get_settings())


@router.get("", response_model=CertificateListResponse)
async def list_certificates(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    ledger: Ledger = Depends(get_ledger),
) -> CertificateListResponse:
    svc = CertificateService(db, ledger=ledger)
    rows = await svc.list_certificates(user_id)
    return CertificateListResponse(certificates=[CertificateResponse(**row) for row in rows])


@router.get("/{course_ref}/state", response_model=CertificateStateResponse)
async def certificate_state(
    course_ref: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    ledger: Ledger = Depends(get_ledger),
) -> CertificateStateResponse:
    svc = CertificateService(db, ledger=ledger)
    course = await resolve_course(db, course_ref)
    state = await svc.get_state(user_id, course.id)
    return CertificateStateResponse(course_id=course.id, state=state.value)


@router.post("/prepare", response_model=PrepareResponse)
async def prepare_certificate(
    body: PrepareRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    ledger: Ledger = Depends(get_ledger),
) -> PrepareResponse:
    """Return a partially signed mint transaction for the learner's wallet to co-sign."""
    svc = CertificateService(db, ledger=ledger)
    result = await svc.prepare(user_id, body.course_ref, wallet_address=body.wallet_address)
    # Preparation refreshes the enrollment's progress
    await db.commit()
    if result["already_issued"]:
        return PrepareResponse(already_issued=True, certificate=CertificateResponse(**result["certificate"]))
    return PrepareResponse(
        already_issued=False,
        serialized_transaction=result["serialized_transaction"],
        mint_address=result["mint_address"],
    )


@router.post("/confirm", response_model=CertificateEnvelope)
async def confirm_certificate(
    body: ConfirmRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    ledger: Ledger = Depends(get_ledger),
) -> CertificateEnvelope:
    """Record the certificate once the learner-signed transaction is final."""
    svc = CertificateService(db, ledger=ledger)
    cert, created = await svc.confirm(
        user_id,
        body.course_ref,
        body.mint_address,
        body.signature,
        lesson_completion_id=body.lesson_completion_id,
    )
    await db.commit()
    return CertificateEnvelope(created=created, certificate=CertificateResponse(**certificate_to_dict(cert)))


@router.post("/issue", response_model=CertificateEnvelope)
async def issue_certificate(
    body: IssueRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    ledger: Ledger = Depends(get_ledger),
) -> CertificateEnvelope:
    """Custodial issuance: the issuer mints and submits directly."""
    svc = CertificateService(db, ledger=ledger)
    cert = await svc.issue_custodial(user_id, body.course_ref)
    await db.commit()
    return CertificateEnvelope(certificate=CertificateResponse(**certificate_to_dict(cert)))
