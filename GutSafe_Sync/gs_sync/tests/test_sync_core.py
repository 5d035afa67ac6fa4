"""End-to-end tests for SyncCore over fake Redis, a mock probe endpoint and a fake remote."""

import json

import pytest
import pytest_asyncio

from GutSafe_Sync.gs_shared import config
from GutSafe_Sync.gs_shared.errors import ConfigurationError
from GutSafe_Sync.gs_shared.settings import SyncSettings
from GutSafe_Sync.gs_shared.types import SyncState
from GutSafe_Sync.gs_db.gateway import RedisGateway
from GutSafe_Sync.sync_core import SyncCore


pytestmark = pytest.mark.asyncio


def _settings(**overrides) -> SyncSettings:
    values = dict(
        probe_url="http://sync.test/v1/health",
        probe_interval_s=3600,
        drain_interval_s=3600,
        submission_timeout_s=0.5,
    )
    values.update(overrides)
    return SyncSettings(_env_file=None, **values)


@pytest_asyncio.fixture
async def make_core(redis_client, encryptor, submitter, probe_client, clock):
    started = []

    async def _make(**overrides) -> SyncCore:
        core = SyncCore(
            _settings(**overrides),
            gateway=RedisGateway(redis_client),
            encryptor=encryptor,
            submitter=submitter,
            probe_client=probe_client,
            clock=clock,
        )
        await core.init()
        started.append(core)
        return core

    yield _make
    for core in started:
        await core.shutdown()


async def test_init_requires_encryption_secret(redis_client, submitter, probe_client):
    core = SyncCore(
        _settings(encryption_secret=None),
        gateway=RedisGateway(redis_client),
        submitter=submitter,
        probe_client=probe_client,
    )
    with pytest.raises(ConfigurationError):
        await core.init()


async def test_use_before_init_is_rejected():
    core = SyncCore(_settings())
    with pytest.raises(ConfigurationError):
        await core.record_scan("k", {"risk": "low"})


async def test_online_scan_submitted_directly(make_core, submitter):
    core = await make_core()
    assert await core.monitor.wait_for_connection(timeout=1)

    outcome = await core.record_scan("5000112637922", {"risk": "low"})

    assert outcome.synced is True
    assert outcome.queued is None
    assert submitter.acknowledged == ["5000112637922"]
    assert await core.cache.pending_scans() == []


async def test_offline_scan_is_queued_then_drained(make_core, probe_backend, submitter):
    probe_backend.status_code = 503
    core = await make_core()
    await core.monitor.refresh()
    assert core.monitor.is_reachable() is False

    outcome = await core.record_scan("5000112637922", {"risk": "high"})

    assert outcome.synced is False
    assert outcome.queued.sync_state == SyncState.PENDING
    assert submitter.submitted == []

    probe_backend.status_code = 200
    await core.monitor.refresh()
    await core.coordinator.trigger_drain()

    assert submitter.acknowledged == ["5000112637922"]
    synced = await core.cache.get_scan(outcome.queued.id)
    assert synced.sync_state == SyncState.SYNCED


async def test_failed_direct_submit_falls_back_to_queue(make_core, submitter):
    submitter.behaviours["flaky"] = "transient"
    core = await make_core()
    assert await core.monitor.wait_for_connection(timeout=1)

    outcome = await core.record_scan("flaky", {"risk": "low"})

    assert outcome.synced is False
    assert outcome.queued is not None
    queued = await core.cache.get_scan(outcome.queued.id)
    assert queued.client_id == outcome.queued.client_id


async def test_unexpected_direct_submit_error_still_queues(make_core, submitter):
    submitter.behaviours["odd"] = ValueError("unexpected body")
    core = await make_core()
    assert await core.monitor.wait_for_connection(timeout=1)

    outcome = await core.record_scan("odd", {"risk": "low"})

    assert outcome.synced is False
    stored = await core.cache.get_scan(outcome.queued.id)
    assert stored.client_id == outcome.queued.client_id


async def test_new_scan_waits_behind_older_queue(make_core, probe_backend, submitter):
    probe_backend.status_code = 503
    core = await make_core()
    await core.monitor.refresh()
    older = await core.record_scan("older", {"risk": "low"})
    assert older.queued is not None

    probe_backend.status_code = 200
    await core.monitor.refresh()
    await core.record_scan("newer", {"risk": "low"})
    await core.coordinator.drain_queue()

    assert submitter.acknowledged == ["older", "newer"]


async def test_interrupted_sync_recovered_on_init(make_core, probe_backend):
    probe_backend.status_code = 503
    first = await make_core()
    await first.monitor.refresh()
    outcome = await first.record_scan("k", {"risk": "low"})
    await first.cache.mark_syncing(outcome.queued.id)
    await first.shutdown()

    second = await make_core()

    recovered = await second.cache.get_scan(outcome.queued.id)
    assert recovered.sync_state == SyncState.PENDING


async def test_scan_payload_encrypted_in_store(make_core, probe_backend, redis_client):
    probe_backend.status_code = 503
    core = await make_core()
    await core.monitor.refresh()

    outcome = await core.record_scan("k", {"symptoms": ["bloating"]})

    raw = await redis_client.hgetall(f"{config.ROW_KEY_PREFIX}:{config.SCAN_QUEUE_TABLE}:{outcome.queued.id}")
    assert json.loads(raw[b"analysis_payload"])[config.ENCRYPTED_MARKER] is True
    assert b"bloating" not in b"".join(raw.values())


# ─── Food lookup ───

async def test_lookup_online_fetches_and_caches(make_core):
    core = await make_core()
    assert await core.monitor.wait_for_connection(timeout=1)

    async def fetcher(key):
        return {"barcode": key, "name": "Sourdough"}

    record = await core.lookup_food("123", fetcher)
    assert record.payload["name"] == "Sourdough"
    assert (await core.cache.lookup_food_item("123")).payload["name"] == "Sourdough"


async def test_lookup_offline_uses_cache(make_core, probe_backend):
    probe_backend.status_code = 503
    core = await make_core()
    await core.monitor.refresh()
    await core.cache.cache_food_item({"barcode": "123", "name": "Sourdough"})
    calls = []

    async def fetcher(key):
        calls.append(key)
        return None

    record = await core.lookup_food("123", fetcher)
    assert record.payload["name"] == "Sourdough"
    assert calls == []
    assert await core.lookup_food("999", fetcher) is None


async def test_lookup_fetch_failure_falls_back_to_cache(make_core):
    core = await make_core()
    assert await core.monitor.wait_for_connection(timeout=1)
    await core.cache.cache_food_item({"barcode": "123", "name": "Cached"})

    async def fetcher(key):
        raise OSError("network dropped")

    assert (await core.lookup_food("123", fetcher)).payload["name"] == "Cached"


# ─── Maintenance ───

async def test_health(make_core, probe_backend):
    probe_backend.status_code = 503
    core = await make_core()
    await core.monitor.refresh()
    await core.record_scan("k", {"risk": "low"})

    health = await core.health()
    assert health.store_connected is True
    assert health.reachable is False
    assert health.quality_score == 0
    assert health.queue_depth == 1
    assert health.stuck_entries == 0


async def test_purge_stale_uses_retention(make_core, probe_backend, clock):
    probe_backend.status_code = 503
    core = await make_core(retention_days=7)
    await core.monitor.refresh()
    outcome = await core.record_scan("k", {"risk": "low"})
    await core.cache.mark_synced(outcome.queued.id)

    clock.advance(6 * 24 * 60 * 60)
    assert await core.purge_stale() == 0

    clock.advance(2 * 24 * 60 * 60)
    assert await core.purge_stale(dry_run=True) == 1
    assert await core.purge_stale() == 1
    assert await core.cache.scans() == []
