"""Middleware tests: request ID, rate limiting, CORS, error handlers."""

from __future__ import annotations

from collections import defaultdict

import pytest
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import IntegrityError, OperationalError

from academy.courses import router as courses_router
from academy.main import create_app
from academy.middleware import rate_limit


class _FakePipeline:
    def __init__(self, counters: dict[str, int], fail: bool) -> None:
        self._counters = counters
        self._fail = fail
        self._keys: list[str] = []

    def incr(self, key: str) -> None:
        self._keys.append(key)

    def expire(self, key: str, seconds: int) -> None:
        pass

    async def execute(self) -> list[object]:
        if self._fail:
            raise RedisConnectionError("connection refused")
        results: list[object] = []
        for key in self._keys:
            self._counters[key] += 1
            results.extend([self._counters[key], True])
        return results


class _FakeRedis:
    def __init__(self, fail: bool = False) -> None:
        self.counters: dict[str, int] = defaultdict(int)
        self.fail = fail

    def pipeline(self) -> _FakePipeline:
        return _FakePipeline(self.counters, self.fail)


@pytest.fixture
def limited_client(db_session, monkeypatch, configure):
    """Client with a 3-request window backed by an in-memory counter."""
    configure(rate_limit_requests=3, rate_limit_window_seconds=3600)
    fake = _FakeRedis()
    monkeypatch.setattr(rate_limit, "get_redis", lambda: fake)
    app = create_app()
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test"), fake


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert "x-request-id" in response.headers
    assert len(response.headers["x-request-id"]) == 36


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_rate_limit_passes_through_without_redis(client: AsyncClient) -> None:
    response = await client.get("/api/v1/achievements")
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_rate_limit_blocks_excess(limited_client) -> None:
    """The fourth request in a three-request window returns 429."""
    client, _ = limited_client
    async with client:
        for _ in range(3):
            response = await client.get("/api/v1/achievements")
            assert response.status_code == 200
        assert response.headers["x-ratelimit-remaining"] == "0"
        assert response.headers["x-ratelimit-limit"] == "3"

        blocked = await client.get("/api/v1/achievements")
        assert blocked.status_code == 429
        assert "retry-after" in blocked.headers


@pytest.mark.asyncio
async def test_forwarded_clients_have_separate_buckets(limited_client) -> None:
    client, _ = limited_client
    async with client:
        for _ in range(3):
            await client.get("/api/v1/achievements", headers={"X-Forwarded-For": "10.0.0.1"})
        other = await client.get("/api/v1/achievements", headers={"X-Forwarded-For": "10.0.0.2, 172.16.0.1"})
        assert other.status_code == 200


@pytest.mark.asyncio
async def test_health_endpoints_are_exempt(limited_client) -> None:
    client, fake = limited_client
    async with client:
        for _ in range(5):
            response = await client.get("/health")
            assert response.status_code == 200
    assert fake.counters == {}


@pytest.mark.asyncio
async def test_redis_failure_fails_open(db_session, monkeypatch) -> None:
    monkeypatch.setattr(rate_limit, "get_redis", lambda: _FakeRedis(fail=True))
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        response = await client.get("/api/v1/achievements")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    response = await client.options(
        "/api/v1/check-in",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Authorization",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


async def _raise(exc: Exception):
    raise exc


@pytest.mark.asyncio
async def test_unreconciled_uniqueness_conflict_is_409(client: AsyncClient, auth_headers, monkeypatch) -> None:
    """An IntegrityError escaping a route is a conflict, not a datastore outage."""
    conflict = IntegrityError("INSERT INTO enrollments", {}, Exception("UNIQUE constraint failed"))
    monkeypatch.setattr(courses_router, "enroll", lambda *_args, **_kw: _raise(conflict))

    response = await client.post("/api/v1/enrollments", json={"course_ref": "x"}, headers=auth_headers("u-1"))
    assert response.status_code == 409
    assert response.json() == {"detail": "Conflicting update, reload and try again"}


@pytest.mark.asyncio
async def test_datastore_failure_is_503(client: AsyncClient, auth_headers, monkeypatch) -> None:
    outage = OperationalError("SELECT 1", {}, Exception("connection refused"))
    monkeypatch.setattr(courses_router, "enroll", lambda *_args, **_kw: _raise(outage))

    response = await client.post("/api/v1/enrollments", json={"course_ref": "x"}, headers=auth_headers("u-1"))
    assert response.status_code == 503
