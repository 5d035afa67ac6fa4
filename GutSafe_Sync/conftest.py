import pytest
import pytest_asyncio
import fakeredis
import nacl.pwhash

from GutSafe_Sync.gs_shared.field_encryptor import FieldEncryptor


class FakeClock:
    """Settable wall clock in seconds, injected wherever code reads time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_encryptor(secret: str = "test-device-secret") -> FieldEncryptor:
    # minimum KDF cost keeps the suite fast
    return FieldEncryptor(
        secret,
        opslimit=nacl.pwhash.argon2id.OPSLIMIT_MIN,
        memlimit=nacl.pwhash.argon2id.MEMLIMIT_MIN,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(scope="session")
def encryptor():
    return make_encryptor()


@pytest.fixture
def fake_server():
    """Backing store shared by every client built on it; survives client restarts."""
    return fakeredis.FakeServer()


@pytest_asyncio.fixture
async def redis_client(fake_server):
    r = fakeredis.FakeAsyncRedis(server=fake_server)
    yield r
    await r.flushdb()
    await r.aclose()
