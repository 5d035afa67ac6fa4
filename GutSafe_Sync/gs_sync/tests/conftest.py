import asyncio
import uuid
from typing import Callable, Optional

import httpx
import pytest
import pytest_asyncio

from GutSafe_Sync.gs_shared.errors import TransientSubmissionError
from GutSafe_Sync.gs_shared.types import IngestResult, ProbeResult, ScanResult
from GutSafe_Sync.gs_db.gateway import RedisGateway
from GutSafe_Sync.gs_db.offline_cache import OfflineCache
from GutSafe_Sync.gs_db.secure_gateway import EncryptingGateway
from GutSafe_Sync.gs_sync.backoff import BackoffPolicy
from GutSafe_Sync.gs_sync.network_monitor import NetworkMonitor
from GutSafe_Sync.gs_sync.sync_coordinator import SyncCoordinator

GOOD_LINK = ProbeResult(reachable=True, latency_ms=40.0)
NO_LINK = ProbeResult(reachable=False, latency_ms=5000.0)


class FakeSubmitter:
    """Records every submission; behaviour per food_key is programmable.

    behaviours maps food_key → "ok" | "hang" | "transient" | an exception instance.
    """

    def __init__(self):
        self.behaviours: dict[str, object] = {}
        self.submitted: list[str] = []
        self.acknowledged: list[str] = []
        self.on_submit: Optional[Callable[[str], None]] = None

    async def submit(self, entry) -> IngestResult:
        self.submitted.append(entry.food_key)
        if self.on_submit is not None:
            self.on_submit(entry.food_key)

        behaviour = self.behaviours.get(entry.food_key, "ok")
        if behaviour == "hang":
            await asyncio.sleep(3600)
        elif behaviour == "transient":
            raise TransientSubmissionError(entry.client_id, "HTTP 503")
        elif isinstance(behaviour, Exception):
            raise behaviour

        self.acknowledged.append(entry.food_key)
        return IngestResult(client_id=entry.client_id, duplicate=False)


class ProbeBackend:
    """httpx MockTransport handler whose health answer can be flipped."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        return httpx.Response(self.status_code, json={"status": "ok"})


def make_scan(food_key: str, recorded_at: int) -> ScanResult:
    return ScanResult(
        food_key=food_key,
        analysis_payload={"risk": "low"},
        recorded_at=recorded_at,
        client_id=str(uuid.uuid4()),
    )


@pytest.fixture
def submitter():
    return FakeSubmitter()


@pytest.fixture
def probe_backend():
    return ProbeBackend()


@pytest_asyncio.fixture
async def probe_client(probe_backend):
    client = httpx.AsyncClient(transport=httpx.MockTransport(probe_backend))
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def monitor(probe_client, clock):
    m = NetworkMonitor("http://sync.test/v1/health", client=probe_client, debounce=0.01, clock=clock)
    yield m
    await m.stop()


@pytest.fixture
def cache(redis_client, encryptor, clock):
    return OfflineCache(EncryptingGateway(RedisGateway(redis_client), encryptor), encryptor=encryptor, clock=clock)


@pytest_asyncio.fixture
async def coordinator(monitor, cache, submitter, clock):
    c = SyncCoordinator(
        monitor,
        cache,
        submitter,
        submission_timeout=0.05,
        backoff=BackoffPolicy(base_s=0.0),
        clock=clock,
    )
    yield c
    await c.shutdown()
