"""Shared test fixtures.

Tests run against a throwaway SQLite database per test and a fake ledger,
so neither PostgreSQL, Redis nor a ledger node is required.
"""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import AsyncGenerator, Callable, Iterator
from typing import Any

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


def _ensure_test_env() -> None:
    """Generate JWT and issuer keys and point settings at them. Runs before academy is imported."""
    tmpdir = tempfile.mkdtemp(prefix="academy_test_keys_")
    private_path = os.path.join(tmpdir, "jwt_private.pem")
    public_path = os.path.join(tmpdir, "jwt_public.pem")

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    with open(private_path, "wb") as f:
        f.write(
            key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )
    with open(public_path, "wb") as f:
        f.write(
            key.public_key().public_bytes(
                serialization.Encoding.PEM,
                serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        )

    os.environ["ACADEMY_JWT_PRIVATE_KEY_PATH"] = private_path
    os.environ["ACADEMY_JWT_PUBLIC_KEY_PATH"] = public_path
    os.environ["ACADEMY_REDIS_URL"] = ""
    os.environ["ACADEMY_LOG_FORMAT"] = "console"
    os.environ["ACADEMY_CUSTODIAL_ISSUANCE_ENABLED"] = "false"
    os.environ["ACADEMY_DATABASE_URL"] = f"sqlite+aiosqlite:///{tmpdir}/unused.db"


_ensure_test_env()

from academy.auth.jwt import create_access_token, reset_keys  # noqa: E402
from academy.certificates.router import get_ledger  # noqa: E402
from academy.config import get_settings  # noqa: E402
from academy.courses.completion import LessonCompletionService  # noqa: E402
from academy.courses.service import enroll  # noqa: E402
from academy.database import close_db, get_engine, get_session, init_db  # noqa: E402
from academy.db.base import Base  # noqa: E402
from academy.db.models import Course, Lesson  # noqa: E402
from academy.gamification.seed import seed_achievements  # noqa: E402
from academy.ledger._base58 import b58encode  # noqa: E402
from academy.ledger.client import ConfirmationResult  # noqa: E402
from academy.ledger.keys import Keypair  # noqa: E402
from academy.main import create_app  # noqa: E402
from academy.profiles.service import link_wallet  # noqa: E402

ISSUER = Keypair.generate()
os.environ["ACADEMY_CERTIFICATE_ISSUER_SECRET_KEY"] = json.dumps(list(ISSUER.secret_key))
get_settings.cache_clear()
reset_keys()


class FakeLedger:
    """In-memory stand-in for LedgerClient that records every call."""

    def __init__(self) -> None:
        self.blockhash = b58encode(bytes(range(1, 33)))
        self.rent_requests: list[int] = []
        self.blockhash_requests = 0
        self.sent: list[bytes] = []
        self.confirmations: list[tuple[str, str]] = []
        self.confirm_err: Any = None
        self.send_error: Exception | None = None

    @property
    def call_count(self) -> int:
        return len(self.rent_requests) + self.blockhash_requests + len(self.sent) + len(self.confirmations)

    async def get_rent_exempt_minimum(self, account_size: int) -> int:
        self.rent_requests.append(account_size)
        return 890_880 + account_size * 6_960

    async def get_latest_blockhash(self) -> str:
        self.blockhash_requests += 1
        return self.blockhash

    async def send_transaction(self, signed: bytes) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(signed)
        # First signature slot follows the one-byte signature count
        return b58encode(signed[1:65])

    async def confirm_transaction(self, signature: str, commitment: str = "finalized") -> ConfirmationResult:
        self.confirmations.append((signature, commitment))
        return ConfirmationResult(signature=signature, err=self.confirm_err)


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    """Each test starts from the environment configured above."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def configure(monkeypatch: pytest.MonkeyPatch) -> Callable[..., None]:
    """Override settings for one test: configure(custodial_issuance_enabled=True)."""

    def _configure(**values: Any) -> None:  # noqa: ANN401
        for name, value in values.items():
            env_value = json.dumps(value) if isinstance(value, bool) else str(value)
            monkeypatch.setenv(f"ACADEMY_{name.upper()}", env_value)
        get_settings.cache_clear()

    return _configure


@pytest.fixture
def issuer() -> Keypair:
    return ISSUER


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest_asyncio.fixture
async def db_session(tmp_path: Any) -> AsyncGenerator[AsyncSession, None]:  # noqa: ANN401
    """A session on a fresh SQLite database with the schema and achievements in place."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'academy.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    sessions = get_session()
    session = await anext(sessions)
    await seed_achievements(session)
    yield session
    await sessions.aclose()
    await close_db()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, fake_ledger: FakeLedger) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, with the ledger replaced by FakeLedger."""
    app = create_app()
    app.dependency_overrides[get_ledger] = lambda: fake_ledger
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


async def _add_course(db: AsyncSession, slug: str, lesson_count: int, published: bool = True) -> Course:
    course = Course(slug=slug, title=slug.replace("-", " ").title())
    db.add(course)
    await db.flush()
    for i in range(1, lesson_count + 1):
        db.add(
            Lesson(
                course_id=course.id,
                slug=f"{slug}-lesson-{i}",
                title=f"Lesson {i}",
                order_index=i,
                is_published=published,
                xp_reward=50,
            )
        )
    await db.commit()
    return course


@pytest.fixture
def make_course(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory: ``await make_course("slug", lesson_count=3, published=False)``."""

    async def _make(slug: str, lesson_count: int = 5, published: bool = True) -> Course:
        return await _add_course(db_session, slug, lesson_count, published)

    return _make


@pytest_asyncio.fixture
async def course(db_session: AsyncSession) -> Course:
    """A published five-lesson course."""
    return await _add_course(db_session, "solana-basics", 5)


@pytest_asyncio.fixture
async def lessons(db_session: AsyncSession, course: Course) -> list[Lesson]:
    result = await db_session.execute(
        select(Lesson).where(Lesson.course_id == course.id).order_by(Lesson.order_index)
    )
    lessons = list(result.scalars().all())
    await db_session.commit()
    return lessons


@pytest_asyncio.fixture
async def graduate(db_session: AsyncSession, course: Course, lessons: list[Lesson]) -> dict[str, Any]:
    """A learner who finished every lesson of ``course`` and linked a wallet."""
    user_id = "graduate-1"
    wallet = Keypair.generate()
    enrollment, _ = await enroll(db_session, user_id, course.slug)
    svc = LessonCompletionService(db_session)
    for lesson in lessons:
        await svc.complete(user_id, lesson, enrollment)
    await link_wallet(db_session, user_id, str(wallet.public_key))
    await db_session.commit()
    return {"user_id": user_id, "wallet": wallet, "enrollment": enrollment}
