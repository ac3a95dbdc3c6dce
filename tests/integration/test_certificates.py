"""Certificate issuance: prepare/confirm, custodial issue and exactly-once persistence."""

from __future__ import annotations

import base64

import pytest
from sqlalchemy import func, select

from academy.certificates.minting import IssuanceMode, build_mint_attempt
from academy.certificates.service import CertificateService, CertificateState
from academy.config import get_settings
from academy.courses.completion import LessonCompletionService
from academy.courses.service import enroll
from academy.db.models import Certificate, Lesson, LessonCompletion
from academy.errors import (
    AuthorizationError,
    IssuerKeyError,
    LedgerRejection,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from academy.gamification.achievement_service import list_user_achievements
from academy.ledger._base58 import b58encode
from academy.ledger.instructions import MINT_SIZE, TOKEN_ACCOUNT_SIZE
from academy.ledger.keys import Keypair, is_valid_public_key
from academy.profiles.service import link_wallet


def _signature() -> str:
    return b58encode(Keypair.generate().sign(b"certificate"))


async def _certificate_count(db) -> int:
    result = await db.execute(select(func.count()).select_from(Certificate))
    return result.scalar_one()


@pytest.mark.asyncio
class TestMintTransaction:
    async def test_wallet_signed_attempt(self, fake_ledger, issuer) -> None:
        learner = Keypair.generate()
        attempt = await build_mint_attempt(fake_ledger, issuer, learner.public_key, IssuanceMode.WALLET_SIGNED)

        assert fake_ledger.rent_requests == [MINT_SIZE, TOKEN_ACCOUNT_SIZE]
        assert fake_ledger.blockhash_requests == 1
        assert attempt.transaction.fee_payer == learner.public_key
        assert attempt.transaction.missing_signers() == [learner.public_key]
        assert attempt.transaction.verify_signatures()
        assert is_valid_public_key(attempt.mint_address)
        assert attempt.mint_address != attempt.token_account_address

    async def test_custodial_attempt_is_fully_signed(self, fake_ledger, issuer) -> None:
        learner = Keypair.generate()
        attempt = await build_mint_attempt(fake_ledger, issuer, learner.public_key, IssuanceMode.CUSTODIAL)

        assert attempt.transaction.fee_payer == issuer.public_key
        assert attempt.transaction.missing_signers() == []
        assert attempt.transaction.signature is not None

    async def test_every_attempt_uses_a_fresh_mint(self, fake_ledger, issuer) -> None:
        learner = Keypair.generate().public_key
        first = await build_mint_attempt(fake_ledger, issuer, learner, IssuanceMode.WALLET_SIGNED)
        second = await build_mint_attempt(fake_ledger, issuer, learner, IssuanceMode.WALLET_SIGNED)
        assert first.mint_address != second.mint_address


@pytest.mark.asyncio
class TestPrepare:
    async def test_prepare_returns_partially_signed_transaction(
        self, db_session, course, graduate, fake_ledger
    ) -> None:
        svc = CertificateService(db_session, ledger=fake_ledger)
        result = await svc.prepare(graduate["user_id"], course.slug)

        assert result["already_issued"] is False
        raw = base64.b64decode(result["serialized_transaction"])
        assert raw[0] == 4
        assert raw[1:65] == bytes(64)
        assert is_valid_public_key(result["mint_address"])
        assert fake_ledger.sent == []
        assert await _certificate_count(db_session) == 0
        assert await svc.get_state(graduate["user_id"], course.id) is CertificateState.ELIGIBLE

    async def test_prepare_before_course_completion(self, db_session, course, lessons, fake_ledger) -> None:
        user_id = "halfway"
        enrollment, _ = await enroll(db_session, user_id, course.slug)
        await LessonCompletionService(db_session).complete(user_id, lessons[0], enrollment)
        await link_wallet(db_session, user_id, str(Keypair.generate().public_key))

        with pytest.raises(PreconditionError, match="Course must be completed") as exc:
            await CertificateService(db_session, ledger=fake_ledger).prepare(user_id, course.slug)
        assert exc.value.missing_lessons == [lesson.slug for lesson in lessons[1:]]
        assert fake_ledger.call_count == 0

    async def test_one_lesson_short_of_large_course(self, db_session, make_course, fake_ledger) -> None:
        """199 of 200 lessons rounds to 99.5%, which must not count as a finished course."""
        user_id = "nearly-there"
        big = await make_course("validator-ops", lesson_count=200)
        ordered = (
            (await db_session.execute(select(Lesson).where(Lesson.course_id == big.id).order_by(Lesson.order_index)))
            .scalars()
            .all()
        )
        enrollment, _ = await enroll(db_session, user_id, big.slug)
        for lesson in ordered[:198]:
            db_session.add(LessonCompletion(user_id=user_id, lesson_id=lesson.id, enrollment_id=enrollment.id))
        await link_wallet(db_session, user_id, str(Keypair.generate().public_key))
        await db_session.flush()

        result = await LessonCompletionService(db_session).complete(user_id, ordered[198], enrollment)
        assert result.progress_percentage == 99
        assert result.course_completed is False
        assert enrollment.completed_at is None
        assert "course_complete" not in {a.code for a, _ in await list_user_achievements(db_session, user_id)}

        with pytest.raises(PreconditionError, match="Course must be completed") as exc:
            await CertificateService(db_session, ledger=fake_ledger).prepare(user_id, big.slug)
        assert exc.value.missing_lessons == [ordered[199].slug]
        assert fake_ledger.call_count == 0

    async def test_prepare_without_enrollment(self, db_session, course, fake_ledger) -> None:
        with pytest.raises(AuthorizationError, match="Enrollment required"):
            await CertificateService(db_session, ledger=fake_ledger).prepare("stranger", course.slug)

    async def test_prepare_without_linked_wallet(self, db_session, course, lessons, fake_ledger) -> None:
        user_id = "no-wallet"
        enrollment, _ = await enroll(db_session, user_id, course.slug)
        svc = LessonCompletionService(db_session)
        for lesson in lessons:
            await svc.complete(user_id, lesson, enrollment)

        with pytest.raises(PreconditionError, match="Link wallet in profile"):
            await CertificateService(db_session, ledger=fake_ledger).prepare(user_id, course.slug)

    async def test_prepare_with_mismatched_wallet(self, db_session, course, graduate, fake_ledger) -> None:
        other_wallet = str(Keypair.generate().public_key)
        with pytest.raises(PreconditionError, match="does not match linked profile wallet"):
            await CertificateService(db_session, ledger=fake_ledger).prepare(
                graduate["user_id"], course.slug, wallet_address=other_wallet
            )

    async def test_missing_issuer_key_makes_no_ledger_calls(self, db_session, course, graduate, fake_ledger) -> None:
        settings = get_settings().model_copy(update={"certificate_issuer_secret_key": ""})
        svc = CertificateService(db_session, ledger=fake_ledger, settings=settings)
        with pytest.raises(IssuerKeyError):
            await svc.prepare(graduate["user_id"], course.slug)
        assert fake_ledger.call_count == 0

    async def test_malformed_issuer_key(self, db_session, course, graduate, fake_ledger) -> None:
        settings = get_settings().model_copy(update={"certificate_issuer_secret_key": "[1, 2, 3]"})
        svc = CertificateService(db_session, ledger=fake_ledger, settings=settings)
        with pytest.raises(IssuerKeyError, match="64 secret-key bytes"):
            await svc.prepare(graduate["user_id"], course.slug)

    async def test_unknown_course(self, db_session, fake_ledger) -> None:
        with pytest.raises(NotFoundError):
            await CertificateService(db_session, ledger=fake_ledger).prepare("anyone", "no-such-course")


@pytest.mark.asyncio
class TestConfirm:
    async def test_confirm_persists_certificate(self, db_session, course, graduate, fake_ledger) -> None:
        svc = CertificateService(db_session, ledger=fake_ledger)
        prepared = await svc.prepare(graduate["user_id"], course.slug)
        signature = _signature()

        cert, created = await svc.confirm(graduate["user_id"], course.slug, prepared["mint_address"], signature)

        assert created is True
        assert cert.mint_address == prepared["mint_address"]
        assert cert.signature == signature
        assert cert.wallet_address == str(graduate["wallet"].public_key)
        assert cert.network == "devnet"
        assert cert.issuance_mode == "wallet"
        assert fake_ledger.confirmations == [(signature, "finalized")]
        assert await svc.get_state(graduate["user_id"], course.id) is CertificateState.ISSUED

    async def test_confirm_twice_returns_existing(self, db_session, course, graduate, fake_ledger) -> None:
        svc = CertificateService(db_session, ledger=fake_ledger)
        mint = str(Keypair.generate().public_key)
        first, _ = await svc.confirm(graduate["user_id"], course.slug, mint, _signature())

        second, created = await svc.confirm(graduate["user_id"], course.slug, mint, _signature())
        assert created is False
        assert second.id == first.id
        assert len(fake_ledger.confirmations) == 1
        assert await _certificate_count(db_session) == 1

    async def test_prepare_after_issue_reports_existing(self, db_session, course, graduate, fake_ledger) -> None:
        svc = CertificateService(db_session, ledger=fake_ledger)
        cert, _ = await svc.confirm(graduate["user_id"], course.slug, str(Keypair.generate().public_key), _signature())

        result = await svc.prepare(graduate["user_id"], course.slug)
        assert result["already_issued"] is True
        assert result["certificate"]["id"] == cert.id

    async def test_failed_transaction_is_not_persisted(self, db_session, course, graduate, fake_ledger) -> None:
        fake_ledger.confirm_err = {"InstructionError": [4, {"Custom": 4}]}
        svc = CertificateService(db_session, ledger=fake_ledger)
        with pytest.raises(LedgerRejection, match="On-chain transaction failed"):
            await svc.confirm(graduate["user_id"], course.slug, str(Keypair.generate().public_key), _signature())
        assert await _certificate_count(db_session) == 0

    @pytest.mark.parametrize(
        ("mint", "signature", "message"),
        [
            ("", "x", "required"),
            ("not-a-key", _signature(), "Invalid mint address"),
            (str(Keypair.generate().public_key), "abc", "Invalid transaction signature"),
            (str(Keypair.generate().public_key), "0OIl", "Invalid transaction signature"),
        ],
    )
    async def test_malformed_input(self, db_session, course, graduate, fake_ledger, mint, signature, message) -> None:
        svc = CertificateService(db_session, ledger=fake_ledger)
        with pytest.raises(ValidationError, match=message):
            await svc.confirm(graduate["user_id"], course.slug, mint, signature)
        assert fake_ledger.call_count == 0

    async def test_confirm_links_lesson_completion(self, db_session, course, graduate, fake_ledger) -> None:
        completion = (
            await db_session.execute(
                select(LessonCompletion).where(LessonCompletion.user_id == graduate["user_id"]).limit(1)
            )
        ).scalar_one()
        svc = CertificateService(db_session, ledger=fake_ledger)
        cert, _ = await svc.confirm(
            graduate["user_id"],
            course.slug,
            str(Keypair.generate().public_key),
            _signature(),
            lesson_completion_id=completion.id,
        )
        assert cert.lesson_completion_id == completion.id

    async def test_confirm_rejects_foreign_lesson_completion(self, db_session, course, graduate, fake_ledger) -> None:
        svc = CertificateService(db_session, ledger=fake_ledger)
        with pytest.raises(ValidationError, match="Unknown lesson completion"):
            await svc.confirm(
                graduate["user_id"],
                course.slug,
                str(Keypair.generate().public_key),
                _signature(),
                lesson_completion_id="missing",
            )

    async def test_lost_insert_race_returns_winner(self, db_session, course, graduate, fake_ledger) -> None:
        svc = CertificateService(db_session, ledger=fake_ledger)
        mint = str(Keypair.generate().public_key)
        winner, _ = await svc.confirm(graduate["user_id"], course.slug, mint, _signature())

        cert, created = await svc._persist(
            graduate["user_id"],
            course.id,
            str(graduate["wallet"].public_key),
            str(Keypair.generate().public_key),
            _signature(),
            IssuanceMode.WALLET_SIGNED,
        )
        assert created is False
        assert cert.id == winner.id
        assert await _certificate_count(db_session) == 1


@pytest.mark.asyncio
class TestCustodialIssue:
    async def test_disabled_by_default(self, db_session, course, graduate, fake_ledger) -> None:
        with pytest.raises(AuthorizationError, match="disabled"):
            await CertificateService(db_session, ledger=fake_ledger).issue_custodial(graduate["user_id"], course.slug)
        assert fake_ledger.call_count == 0

    async def test_issue_submits_and_persists(self, db_session, course, graduate, fake_ledger, configure) -> None:
        configure(custodial_issuance_enabled=True)
        svc = CertificateService(db_session, ledger=fake_ledger)
        cert = await svc.issue_custodial(graduate["user_id"], course.slug)

        assert len(fake_ledger.sent) == 1
        raw = fake_ledger.sent[0]
        assert raw[0] == 3
        assert bytes(64) not in (raw[1:65], raw[65:129], raw[129:193])
        assert cert.issuance_mode == "custodial"
        assert cert.signature == b58encode(raw[1:65])
        assert fake_ledger.confirmations == [(cert.signature, "finalized")]

        again = await svc.issue_custodial(graduate["user_id"], course.slug)
        assert again.id == cert.id
        assert len(fake_ledger.sent) == 1

    async def test_failed_custodial_transaction(self, db_session, course, graduate, fake_ledger, configure) -> None:
        configure(custodial_issuance_enabled=True)
        fake_ledger.confirm_err = "BlockhashNotFound"
        with pytest.raises(LedgerRejection):
            await CertificateService(db_session, ledger=fake_ledger).issue_custodial(graduate["user_id"], course.slug)
        assert await _certificate_count(db_session) == 0

    async def test_issue_on_course_completion(self, db_session, course, lessons, fake_ledger, configure) -> None:
        configure(custodial_issuance_enabled=True)
        user_id = "finisher"
        await enroll(db_session, user_id, course.slug)
        await link_wallet(db_session, user_id, str(Keypair.generate().public_key))
        svc = LessonCompletionService(db_session, certificates=CertificateService(db_session, ledger=fake_ledger))

        for lesson in lessons[:4]:
            result = await svc.complete_lesson(user_id, lesson.id, course.slug, issue_certificate_on_complete=True)
            assert result.certificate is None
        result = await svc.complete_lesson(user_id, lessons[4].id, course.slug, issue_certificate_on_complete=True)

        assert result.course_completed is True
        assert result.certificate is not None
        assert result.certificate["issuance_mode"] == "custodial"
        assert result.certificate_error is None

    async def test_issuance_failure_keeps_completion(self, db_session, course, lessons, fake_ledger, configure) -> None:
        configure(custodial_issuance_enabled=True)
        fake_ledger.confirm_err = "InsufficientFundsForRent"
        user_id = "finisher"
        enrollment, _ = await enroll(db_session, user_id, course.slug)
        await link_wallet(db_session, user_id, str(Keypair.generate().public_key))
        svc = LessonCompletionService(db_session, certificates=CertificateService(db_session, ledger=fake_ledger))

        for lesson in lessons:
            result = await svc.complete_lesson(user_id, lesson.id, course.slug, issue_certificate_on_complete=True)

        assert result.course_completed is True
        assert result.certificate is None
        assert result.certificate_error == "On-chain transaction failed"
        assert enrollment.completed_at is not None


@pytest.mark.asyncio
class TestListing:
    async def test_list_certificates_includes_course(self, db_session, course, graduate, fake_ledger) -> None:
        svc = CertificateService(db_session, ledger=fake_ledger)
        await svc.confirm(graduate["user_id"], course.slug, str(Keypair.generate().public_key), _signature())

        rows = await svc.list_certificates(graduate["user_id"])
        assert len(rows) == 1
        assert rows[0]["course_slug"] == course.slug
        assert rows[0]["course_title"] == course.title
        assert await svc.list_certificates("nobody") == []

    async def test_state_not_eligible(self, db_session, course, lessons, fake_ledger) -> None:
        svc = CertificateService(db_session, ledger=fake_ledger)
        assert await svc.get_state("nobody", course.id) is CertificateState.NOT_ELIGIBLE
