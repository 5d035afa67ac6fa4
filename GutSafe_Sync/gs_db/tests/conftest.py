import uuid

import pytest

from GutSafe_Sync.gs_shared.types import ScanResult
from GutSafe_Sync.gs_db.gateway import RedisGateway
from GutSafe_Sync.gs_db.offline_cache import OfflineCache
from GutSafe_Sync.gs_db.secure_gateway import EncryptingGateway
from GutSafe_Sync.gs_db.stats import CacheReporter


@pytest.fixture
def gateway(redis_client):
    return RedisGateway(redis_client)


@pytest.fixture
def secure_gateway(gateway, encryptor):
    return EncryptingGateway(gateway, encryptor)


@pytest.fixture
def cache(secure_gateway, encryptor, clock):
    return OfflineCache(secure_gateway, encryptor=encryptor, clock=clock)


@pytest.fixture
def reporter(cache):
    return CacheReporter(cache, max_attempts=8)


def make_scan(food_key: str = "0123456789012", recorded_at: int = 1_700_000_000_000, **payload) -> ScanResult:
    return ScanResult(
        food_key=food_key,
        analysis_payload=payload or {"risk": "low", "triggers": []},
        recorded_at=recorded_at,
        client_id=str(uuid.uuid4()),
    )


@pytest.fixture
def sample_food():
    return {
        "barcode": "5000112637922",
        "name": "Greek Yogurt",
        "brand": "Dairy Co",
        "fodmap": {"lactose": "moderate"},
    }
