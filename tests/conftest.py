"""
Pytest configuration and shared fixtures.
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from uuid import uuid4

import fakeredis
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

# Keep tests off the network before any settings are cached
os.environ.pop("BUILDKITE_AGENT_TOKEN", None)
os.environ["TRACING_ENABLED"] = "false"

from custom_scheduler.api.main import create_app  # noqa: E402
from custom_scheduler.store import JobStore, close_store, init_store  # noqa: E402
from custom_scheduler.types.job import Job  # noqa: E402

TEST_TTL_SECONDS = 3600


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[fakeredis.FakeAsyncRedis]:
    """Create an isolated in-memory Redis for each test."""
    client = fakeredis.FakeAsyncRedis(
        server=fakeredis.FakeServer(),
        decode_responses=True,
    )
    yield client
    await client.aclose()


@pytest.fixture
def store(redis_client: fakeredis.FakeAsyncRedis) -> JobStore:
    """Create a job store over the test Redis."""
    return JobStore(redis_client, ttl_seconds=TEST_TTL_SECONDS)


@pytest_asyncio.fixture
async def app(redis_client: fakeredis.FakeAsyncRedis) -> AsyncGenerator[FastAPI]:
    """Create a FastAPI app bound to the test Redis."""
    await init_store(redis_client)

    app = create_app()
    yield app

    await close_store()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def make_job():
    """Factory for reserved jobs."""

    def _make_job(
        rules: list[str] | None = None,
        queue_key: str = "default",
        uuid: str | None = None,
        priority: int = 0,
    ) -> Job:
        return Job(
            uuid=uuid or str(uuid4()),
            queue_key=queue_key,
            agent_query_rules=rules if rules is not None else ["queue=default"],
            priority=priority,
            scheduled_at=datetime.now(UTC),
            reserved_at=datetime.now(UTC),
        )

    return _make_job
