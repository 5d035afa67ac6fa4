"""Tests for RemoteSyncClient against an httpx MockTransport."""

import json

import httpx
import pytest

from GutSafe_Sync.gs_shared.errors import SubmissionRejectedError, TransientSubmissionError
from GutSafe_Sync.gs_sync.remote_client import RemoteSyncClient

from .conftest import make_scan


pytestmark = pytest.mark.asyncio


def _client(handler) -> RemoteSyncClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://sync.test")
    return RemoteSyncClient(client=http)


async def test_submit_posts_scan():
    seen = []

    def handler(request):
        seen.append(request)
        body = json.loads(request.content)
        return httpx.Response(200, json={"client_id": body["client_id"], "duplicate": False})

    scan = make_scan("5000112637922", recorded_at=1_700_000_000_000)
    result = await _client(handler).submit(scan)

    assert result.client_id == scan.client_id
    assert result.duplicate is False

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/v1/scans"
    assert json.loads(request.content) == {
        "client_id": scan.client_id,
        "food_key": "5000112637922",
        "analysis_payload": {"risk": "low"},
        "recorded_at": 1_700_000_000_000,
    }


async def test_duplicate_is_acknowledged():
    def handler(request):
        return httpx.Response(200, json={"client_id": json.loads(request.content)["client_id"], "duplicate": True})

    result = await _client(handler).submit(make_scan("k", 1))
    assert result.duplicate is True


@pytest.mark.parametrize("status", [500, 502, 503, 429])
async def test_server_side_errors_are_transient(status):
    client = _client(lambda request: httpx.Response(status))
    with pytest.raises(TransientSubmissionError):
        await client.submit(make_scan("k", 1))


@pytest.mark.parametrize("status", [400, 409, 422])
async def test_client_errors_are_rejections(status):
    client = _client(lambda request: httpx.Response(status, text="invalid scan"))
    with pytest.raises(SubmissionRejectedError) as exc_info:
        await client.submit(make_scan("k", 1))
    assert exc_info.value.status_code == status
    assert exc_info.value.detail == "invalid scan"


async def test_connection_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(TransientSubmissionError):
        await _client(handler).submit(make_scan("k", 1))


async def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TransientSubmissionError) as exc_info:
        await _client(handler).submit(make_scan("k", 1))
    assert "timeout" in str(exc_info.value)


@pytest.mark.parametrize("status, body", [
    (200, {"text": "<html>portal</html>"}),
    (204, {}),
    (201, {"json": ["unexpected", "shape"]}),
])
async def test_any_2xx_is_acknowledged(status, body):
    scan = make_scan("k", 1)
    result = await _client(lambda request: httpx.Response(status, **body)).submit(scan)

    assert result.client_id == scan.client_id
    assert result.duplicate is False


async def test_aclose_leaves_injected_client_open():
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))
    client = RemoteSyncClient(client=http)
    await client.aclose()
    assert http.is_closed is False
    await http.aclose()
