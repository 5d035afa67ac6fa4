from GutSafe_Sync.gs_shared import config
from GutSafe_Sync.gs_shared.types import CacheStats, SyncState
from GutSafe_Sync.gs_db.offline_cache import OfflineCache


class CacheReporter:
    def __init__(self, cache: OfflineCache, max_attempts: int = config.MAX_ATTEMPTS):
        self.cache = cache
        self.max_attempts = max_attempts

    async def get_cache_stats(self) -> CacheStats:
        counts = await self.cache.count_by_state()
        stuck = await self.cache.stuck_scans(self.max_attempts)

        return CacheStats(
            food_item_count=await self.cache.food_count(),
            pending=counts[SyncState.PENDING],
            syncing=counts[SyncState.SYNCING],
            synced=counts[SyncState.SYNCED],
            failed=counts[SyncState.FAILED],
            stuck=len(stuck),
        )

    async def get_queue_depth(self) -> int:
        return len(await self.cache.pending_scans())

    async def get_stuck_report(self) -> list[dict]:
        return [
            {
                "id": e.id,
                "client_id": e.client_id,
                "food_key": e.food_key,
                "attempts": e.attempts,
                "last_error": e.last_error,
            }
            for e in await self.cache.stuck_scans(self.max_attempts)
        ]

    async def get_full_dashboard(self) -> dict:
        return {
            "cache": await self.get_cache_stats(),
            "queue_depth": await self.get_queue_depth(),
            "stuck": await self.get_stuck_report(),
        }
