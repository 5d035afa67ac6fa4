import json
import logging
from typing import Optional

import asyncpg

from GutSafe_Sync.gs_shared import errors
from GutSafe_Sync.gs_shared.types import IngestResult, ScanSubmission

logger = logging.getLogger(__name__)


class ScanIngestServer:
    """Remote side of scan sync. Ingest is idempotent on client_id."""
    pool: asyncpg.Pool

    def __init__(self, p: asyncpg.Pool):
        self.pool = p

    async def submit_scan(self, scan: ScanSubmission) -> IngestResult:
        try:
            async with self.pool.acquire() as conn:
                record_id = await conn.fetchval(
                    """
                    INSERT INTO scan_submissions
                        (client_id, food_key, analysis_payload, recorded_at)
                    VALUES ($1, $2, $3::jsonb, $4)
                    ON CONFLICT (client_id) DO NOTHING
                    RETURNING record_id
                    """,
                    scan.client_id,
                    scan.food_key,
                    json.dumps(scan.analysis_payload),
                    scan.recorded_at,
                )
        except asyncpg.PostgresError as e:
            raise errors.IngestError(f"submit_scan failed: {e}")

        if record_id is None:
            logger.info("Duplicate submission %s acknowledged", scan.client_id)
        return IngestResult(client_id=scan.client_id, duplicate=record_id is None)

    async def submit_scans(self, scans: list[ScanSubmission]) -> int:
        if not scans:
            return 0
        try:
            async with self.pool.acquire() as conn:
                inserted = 0
                async with conn.transaction():
                    for scan in scans:
                        result = await conn.fetchrow(
                            """
                            INSERT INTO scan_submissions
                                (client_id, food_key, analysis_payload, recorded_at)
                            VALUES ($1, $2, $3::jsonb, $4)
                            ON CONFLICT (client_id) DO NOTHING
                            RETURNING record_id
                            """,
                            scan.client_id,
                            scan.food_key,
                            json.dumps(scan.analysis_payload),
                            scan.recorded_at,
                        )
                        if result:
                            inserted += 1
                return inserted
        except asyncpg.PostgresError as e:
            raise errors.IngestError(f"submit_scans failed: {e}")

    async def get_scan(self, client_id: str) -> Optional[ScanSubmission]:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT client_id, food_key, analysis_payload::text AS payload, recorded_at
                    FROM scan_submissions
                    WHERE client_id = $1
                    """,
                    client_id,
                )
        except asyncpg.PostgresError as e:
            raise errors.ServerDatabaseError(f"get_scan failed: {e}")

        if row is None:
            return None
        return ScanSubmission(
            client_id=row["client_id"],
            food_key=row["food_key"],
            analysis_payload=json.loads(row["payload"]),
            recorded_at=row["recorded_at"],
        )

    async def count_scans(self, food_key: Optional[str] = None) -> int:
        try:
            async with self.pool.acquire() as conn:
                if food_key is None:
                    return await conn.fetchval("SELECT COUNT(*) FROM scan_submissions")
                return await conn.fetchval(
                    "SELECT COUNT(*) FROM scan_submissions WHERE food_key = $1",
                    food_key,
                )
        except asyncpg.PostgresError as e:
            raise errors.ServerDatabaseError(f"count_scans failed: {e}")

    async def purge_stale(self, max_age_days: int = 90) -> int:
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    """
                    DELETE FROM scan_submissions
                    WHERE received_at < NOW() - INTERVAL '1 day' * $1
                    """,
                    max_age_days,
                )
                # result is "DELETE N" string
                return int(result.split()[-1])
        except asyncpg.PostgresError as e:
            raise errors.ServerDatabaseError(f"purge_stale failed: {e}")
