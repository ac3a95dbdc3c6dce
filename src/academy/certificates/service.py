"""Certificate issuance: wallet-signed prepare/confirm and custodial issue.

Per (user, course) a certificate moves NOT_ELIGIBLE -> ELIGIBLE -> PREPARED
-> ISSUED. Only ISSUED is persisted; a prepared transaction that is never
confirmed is simply dropped. The ``certificates`` uniqueness constraint on
(user, course) makes issuance exactly-once: a losing writer returns the
winner's row.
"""

from __future__ import annotations

import enum
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.certificates.minting import IssuanceMode, Ledger, build_mint_attempt
from academy.config import Settings, get_settings
from academy.courses.progress import recompute_enrollment_progress
from academy.courses.service import get_enrollment, resolve_course
from academy.db.models import Certificate, Course, Enrollment, LessonCompletion, Profile
from academy.errors import (
    AuthorizationError,
    IssuerKeyError,
    LedgerRejection,
    PreconditionError,
    ValidationError,
)
from academy.ledger._base58 import b58decode
from academy.ledger.client import LedgerClient
from academy.ledger.keys import SIGNATURE_LENGTH, Keypair, PublicKey, is_valid_public_key

logger = structlog.get_logger()


class CertificateState(str, enum.Enum):
    NOT_ELIGIBLE = "not_eligible"
    ELIGIBLE = "eligible"
    PREPARED = "prepared"
    ISSUED = "issued"


def certificate_to_dict(cert: Certificate) -> dict[str, Any]:
    return {
        "id": cert.id,
        "course_id": cert.course_id,
        "wallet_address": cert.wallet_address,
        "mint_address": cert.mint_address,
        "signature": cert.signature,
        "network": cert.network,
        "issuance_mode": cert.issuance_mode,
        "issued_at": cert.issued_at.isoformat() if cert.issued_at else None,
    }


def load_issuer_keypair(settings: Settings) -> Keypair:
    """Parse the configured issuer secret key. Raises IssuerKeyError if absent or malformed."""
    raw = settings.certificate_issuer_secret_key.strip()
    if not raw:
        msg = "Certificate issuer key is not configured"
        raise IssuerKeyError(msg)
    try:
        return Keypair.from_json(raw)
    except ValueError as e:
        msg = "Certificate issuer key must be a JSON array of 64 secret-key bytes"
        raise IssuerKeyError(msg) from e


class CertificateService:
    """Certificate issuance for one unit of work."""

    def __init__(
        self,
        db: AsyncSession,
        ledger: Ledger | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.ledger: Ledger = ledger or LedgerClient.from_settings(self.settings)

    @property
    def custodial_enabled(self) -> bool:
        return self.settings.custodial_issuance_enabled

    # --- Lookups ---

    async def get_certificate(self, user_id: str, course_id: str) -> Certificate | None:
        result = await self.db.execute(
            select(Certificate).where(Certificate.user_id == user_id, Certificate.course_id == course_id)
        )
        return result.scalar_one_or_none()

    async def list_certificates(self, user_id: str) -> list[dict[str, Any]]:
        """Issued certificates for a user, newest first, with course title and slug."""
        result = await self.db.execute(
            select(Certificate, Course.slug, Course.title)
            .join(Course, Course.id == Certificate.course_id)
            .where(Certificate.user_id == user_id)
            .order_by(Certificate.issued_at.desc())
        )
        return [
            {**certificate_to_dict(cert), "course_slug": slug, "course_title": title}
            for cert, slug, title in result.all()
        ]

    async def get_state(self, user_id: str, course_ref: str) -> CertificateState:
        """Persisted state for (user, course). PREPARED is never stored, so it is not reported."""
        course = await resolve_course(self.db, course_ref)
        if await self.get_certificate(user_id, course.id) is not None:
            return CertificateState.ISSUED
        enrollment = await get_enrollment(self.db, user_id, course.id)
        if enrollment is None or enrollment.completed_at is None:
            return CertificateState.NOT_ELIGIBLE
        if await self._linked_wallet(user_id) is None:
            return CertificateState.NOT_ELIGIBLE
        return CertificateState.ELIGIBLE

    # --- Preconditions ---

    async def _linked_wallet(self, user_id: str) -> str | None:
        result = await self.db.execute(select(Profile.wallet_address).where(Profile.id == user_id))
        return result.scalar_one_or_none()

    async def _require_wallet(self, user_id: str, wallet_address: str | None = None) -> str:
        wallet = await self._linked_wallet(user_id)
        if not wallet:
            msg = "Link wallet in profile before minting certificate"
            raise PreconditionError(msg)
        if wallet_address and wallet_address != wallet:
            msg = "Connected wallet does not match linked profile wallet"
            raise PreconditionError(msg)
        return wallet

    async def _require_completion(self, user_id: str, course_id: str) -> Enrollment:
        enrollment = await get_enrollment(self.db, user_id, course_id)
        if enrollment is None:
            msg = "Enrollment required"
            raise AuthorizationError(msg)
        state = await recompute_enrollment_progress(self.db, enrollment)
        if not state.course_completed:
            msg = "Course must be completed before certificate issuance"
            raise PreconditionError(msg, missing_lessons=state.missing_lessons)
        return enrollment

    def _issuer(self) -> Keypair:
        return load_issuer_keypair(self.settings)

    # --- Wallet-signed flow ---

    async def prepare(self, user_id: str, course_ref: str, wallet_address: str | None = None) -> dict[str, Any]:
        """Build the partially signed certificate transaction for the learner's wallet.

        Nothing is broadcast or persisted. If the certificate already exists
        it is returned with ``already_issued`` set instead.
        """
        course = await resolve_course(self.db, course_ref)
        existing = await self.get_certificate(user_id, course.id)
        if existing is not None:
            return {"already_issued": True, "certificate": certificate_to_dict(existing)}

        await self._require_completion(user_id, course.id)
        wallet = await self._require_wallet(user_id, wallet_address)
        issuer = self._issuer()

        attempt = await build_mint_attempt(self.ledger, issuer, PublicKey(wallet), IssuanceMode.WALLET_SIGNED)
        logger.info(
            "certificate_prepared",
            user_id=user_id,
            course_id=course.id,
            mint_address=attempt.mint_address,
        )
        return {
            "already_issued": False,
            "serialized_transaction": attempt.transaction.to_base64(require_all_signatures=False),
            "mint_address": attempt.mint_address,
        }

    async def confirm(
        self,
        user_id: str,
        course_ref: str,
        mint_address: str,
        signature: str,
        lesson_completion_id: str | None = None,
    ) -> tuple[Certificate, bool]:
        """Record a learner-signed certificate once the ledger reports it final.

        Returns (certificate, created). Confirming an issued certificate
        returns the stored row unchanged.
        """
        if not mint_address or not signature:
            msg = "mint_address and signature are required"
            raise ValidationError(msg)
        if not is_valid_public_key(mint_address):
            msg = "Invalid mint address"
            raise ValidationError(msg)
        if not _is_signature(signature):
            msg = "Invalid transaction signature"
            raise ValidationError(msg)

        course = await resolve_course(self.db, course_ref)
        existing = await self.get_certificate(user_id, course.id)
        if existing is not None:
            return existing, False

        wallet = await self._require_wallet(user_id)
        await self._require_completion(user_id, course.id)
        if lesson_completion_id is not None:
            completion = await self.db.get(LessonCompletion, lesson_completion_id)
            if completion is None or completion.user_id != user_id:
                msg = "Unknown lesson completion"
                raise ValidationError(msg)

        confirmation = await self.ledger.confirm_transaction(signature, self.settings.ledger_commitment)
        if not confirmation.ok:
            logger.warning("certificate_tx_failed", user_id=user_id, signature=signature, err=confirmation.err)
            msg = "On-chain transaction failed"
            raise LedgerRejection(msg)

        return await self._persist(
            user_id,
            course.id,
            wallet,
            mint_address,
            signature,
            IssuanceMode.WALLET_SIGNED,
            lesson_completion_id=lesson_completion_id,
        )

    # --- Custodial flow ---

    async def issue_custodial(self, user_id: str, course_ref: str) -> Certificate:
        """Mint, submit and confirm with the issuer paying, then persist."""
        if not self.custodial_enabled:
            msg = "Custodial certificate issuance is disabled"
            raise AuthorizationError(msg)

        course = await resolve_course(self.db, course_ref)
        existing = await self.get_certificate(user_id, course.id)
        if existing is not None:
            return existing

        await self._require_completion(user_id, course.id)
        wallet = await self._require_wallet(user_id)
        issuer = self._issuer()

        attempt = await build_mint_attempt(self.ledger, issuer, PublicKey(wallet), IssuanceMode.CUSTODIAL)
        signature = await self.ledger.send_transaction(attempt.transaction.serialize())
        confirmation = await self.ledger.confirm_transaction(signature, self.settings.ledger_commitment)
        if not confirmation.ok:
            logger.warning("certificate_tx_failed", user_id=user_id, signature=signature, err=confirmation.err)
            msg = "On-chain transaction failed"
            raise LedgerRejection(msg)

        cert, _ = await self._persist(
            user_id, course.id, wallet, attempt.mint_address, signature, IssuanceMode.CUSTODIAL
        )
        return cert

    # --- Persistence ---

    async def _persist(
        self,
        user_id: str,
        course_id: str,
        wallet: str,
        mint_address: str,
        signature: str,
        mode: IssuanceMode,
        lesson_completion_id: str | None = None,
    ) -> tuple[Certificate, bool]:
        cert = Certificate(
            user_id=user_id,
            course_id=course_id,
            wallet_address=wallet,
            mint_address=mint_address,
            signature=signature,
            network=self.settings.ledger_network,
            issuance_mode=mode.value,
            lesson_completion_id=lesson_completion_id,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(cert)
        except IntegrityError:
            winner = await self.get_certificate(user_id, course_id)
            if winner is None:
                raise
            logger.info("certificate_race_recovered", user_id=user_id, course_id=course_id)
            return winner, False

        logger.info(
            "certificate_issued",
            user_id=user_id,
            course_id=course_id,
            mint_address=mint_address,
            mode=mode.value,
        )
        return cert, True


def _is_signature(value: str) -> bool:
    try:
        return len(b58decode(value)) == SIGNATURE_LENGTH
    except ValueError:
        return False
