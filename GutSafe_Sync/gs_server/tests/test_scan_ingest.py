import pytest

from .conftest import make_submission


pytestmark = pytest.mark.asyncio


async def test_submit_stores_scan(ingest):
    scan = make_submission(risk="high", triggers=["lactose"])

    result = await ingest.submit_scan(scan)

    assert result.client_id == scan.client_id
    assert result.duplicate is False
    stored = await ingest.get_scan(scan.client_id)
    assert stored == scan


async def test_resubmission_is_idempotent(ingest):
    scan = make_submission()

    first = await ingest.submit_scan(scan)
    second = await ingest.submit_scan(scan)

    assert first.duplicate is False
    assert second.duplicate is True
    assert await ingest.count_scans() == 1


async def test_batch_skips_duplicates(ingest):
    scans = [make_submission() for _ in range(3)]
    await ingest.submit_scan(scans[0])

    inserted = await ingest.submit_scans(scans)

    assert inserted == 2
    assert await ingest.count_scans() == 3


async def test_empty_batch(ingest):
    assert await ingest.submit_scans([]) == 0


async def test_count_by_food_key(ingest):
    await ingest.submit_scan(make_submission("a"))
    await ingest.submit_scan(make_submission("a"))
    await ingest.submit_scan(make_submission("b"))

    assert await ingest.count_scans("a") == 2
    assert await ingest.count_scans("b") == 1
    assert await ingest.count_scans("zzz") == 0


async def test_get_missing_scan(ingest):
    assert await ingest.get_scan("no-such-id") is None


async def test_purge_stale_removes_old(ingest, pool):
    old = make_submission()
    fresh = make_submission()
    await ingest.submit_scans([old, fresh])
    async with pool.acquire() as conn:
        await conn.execute(
            "UPDATE scan_submissions SET received_at = NOW() - INTERVAL '1 day' * $1 WHERE client_id = $2",
            120,
            old.client_id,
        )

    assert await ingest.purge_stale(max_age_days=90) == 1
    assert await ingest.get_scan(old.client_id) is None
    assert await ingest.get_scan(fresh.client_id) is not None
