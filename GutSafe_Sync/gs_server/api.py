"""
FastAPI endpoints for the GutSafe scan ingest service.

The device-side RemoteSyncClient posts queued scans to /v1/scans, and the
NetworkMonitor probes /v1/health. A repeated client_id is acknowledged
with duplicate=true rather than stored twice.
"""

from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from GutSafe_Sync.gs_server import config, db
from GutSafe_Sync.gs_server.scan_ingest import ScanIngestServer
from GutSafe_Sync.gs_shared.types import ScanSubmission
from GutSafe_Sync.gs_shared.errors import IngestError, ServerDatabaseError


# ── Pydantic request/response models ──


class ScanIn(BaseModel):
    client_id: str = Field(min_length=1, max_length=64)
    food_key: str = Field(min_length=1)
    analysis_payload: dict[str, Any]
    recorded_at: int = Field(ge=0)


class IngestResponse(BaseModel):
    client_id: str
    duplicate: bool


class CountResponse(BaseModel):
    count: int


class PurgeRequest(BaseModel):
    max_age_days: int = config.PURGE_STALE_MAX_AGE_DAYS


class DeleteResponse(BaseModel):
    deleted: int


class HealthResponse(BaseModel):
    status: str
    db_connected: bool


# ── App lifecycle ──


@asynccontextmanager
async def lifespan(app: FastAPI):
    p = await db.create_pool(
        config.PG_DSN,
        min_size=config.PG_POOL_MIN_SIZE,
        max_size=config.PG_POOL_MAX_SIZE,
    )
    await db.ensure_schema(p)
    yield
    await db.close_pool()


app = FastAPI(title="GutSafe Scan Ingest", version="1.0.0", lifespan=lifespan)


def _get_ingest() -> ScanIngestServer:
    if db.pool is None:
        raise HTTPException(status_code=503, detail="Database pool not initialized")
    return ScanIngestServer(db.pool)


# ── Endpoints ──


@app.post("/v1/scans", response_model=IngestResponse)
async def submit_scan(req: ScanIn):
    ingest = _get_ingest()
    try:
        result = await ingest.submit_scan(
            ScanSubmission(
                client_id=req.client_id,
                food_key=req.food_key,
                analysis_payload=req.analysis_payload,
                recorded_at=req.recorded_at,
            )
        )
    except IngestError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return IngestResponse(client_id=result.client_id, duplicate=result.duplicate)


@app.get("/v1/scans/count", response_model=CountResponse)
async def get_count(food_key: Optional[str] = Query(None)):
    ingest = _get_ingest()
    try:
        count = await ingest.count_scans(food_key)
    except ServerDatabaseError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return CountResponse(count=count)


@app.post("/v1/admin/purge-stale", response_model=DeleteResponse)
async def purge_stale(req: PurgeRequest):
    ingest = _get_ingest()
    try:
        deleted = await ingest.purge_stale(max_age_days=req.max_age_days)
    except ServerDatabaseError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return DeleteResponse(deleted=deleted)


@app.get("/v1/health", response_model=HealthResponse)
async def health():
    connected = await db.health_check()
    return HealthResponse(
        status="ok" if connected else "degraded",
        db_connected=connected,
    )
