"""
HTTP client for the remote scan ingest endpoint.

Submissions carry the client-generated scan id, and the remote
de-duplicates on it, so repeating a submission whose acknowledgment was
lost is harmless.
"""

import logging
from typing import Optional

import httpx

from GutSafe_Sync.gs_shared import config
from GutSafe_Sync.gs_shared.errors import SubmissionRejectedError, TransientSubmissionError
from GutSafe_Sync.gs_shared.types import IngestResult, QueuedScanResult, ScanResult

logger = logging.getLogger(__name__)


class RemoteSyncClient:
    """Submits scans to POST /v1/scans."""

    def __init__(
        self,
        base_url: str = config.REMOTE_BASE_URL,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = config.SUBMISSION_TIMEOUT_SECONDS,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def submit(self, entry: QueuedScanResult | ScanResult) -> IngestResult:
        body = {
            "client_id": entry.client_id,
            "food_key": entry.food_key,
            "analysis_payload": entry.analysis_payload,
            "recorded_at": entry.recorded_at,
        }
        try:
            resp = await self._client.post(config.REMOTE_SCANS_PATH, json=body)
        except httpx.TimeoutException:
            raise TransientSubmissionError(entry.client_id, "timeout")
        except httpx.TransportError as e:
            raise TransientSubmissionError(entry.client_id, e.__class__.__name__)

        if resp.status_code >= 500 or resp.status_code == 429:
            raise TransientSubmissionError(entry.client_id, f"HTTP {resp.status_code}")
        if resp.is_client_error:
            raise SubmissionRejectedError(entry.client_id, resp.status_code, resp.text)

        # any 2xx is an acknowledgment; the body only adds the duplicate flag
        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.debug("Scan %s acknowledged with HTTP %d and no JSON object body",
                         entry.client_id, resp.status_code)
            data = {}
        result = IngestResult(client_id=entry.client_id, duplicate=bool(data.get("duplicate", False)))
        if result.duplicate:
            logger.debug("Remote already had scan %s", entry.client_id)
        return result

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
