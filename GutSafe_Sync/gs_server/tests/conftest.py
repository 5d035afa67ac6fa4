import asyncio
import os
import uuid

import asyncpg
import pytest
import pytest_asyncio

from GutSafe_Sync.gs_shared.types import ScanSubmission
from GutSafe_Sync.gs_server import config
from GutSafe_Sync.gs_server.scan_ingest import ScanIngestServer

TEST_DSN = os.environ.get("GUTSAFE_TEST_DSN", config.PG_TEST_DSN)


@pytest_asyncio.fixture
async def pool():
    """Connection pool on the test database; tables emptied before every test."""
    try:
        p = await asyncpg.create_pool(TEST_DSN, min_size=1, max_size=5, timeout=5)
    except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as e:
        pytest.skip(f"PostgreSQL not available at {TEST_DSN}: {e}")

    async with p.acquire() as conn:
        await conn.execute(config.SCHEMA_SQL)
        await conn.execute("TRUNCATE scan_submissions, documents, sequences RESTART IDENTITY")
    yield p
    await p.close()


@pytest.fixture
def ingest(pool) -> ScanIngestServer:
    return ScanIngestServer(pool)


def make_submission(food_key: str = "5000112637922", **payload) -> ScanSubmission:
    return ScanSubmission(
        client_id=str(uuid.uuid4()),
        food_key=food_key,
        analysis_payload=payload or {"risk": "low", "triggers": []},
        recorded_at=1_700_000_000_000,
    )
