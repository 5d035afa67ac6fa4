"""
SyncCore — wires the offline-first sync components together.

    scan flow ─ record_scan ─┬─ online + empty queue → RemoteSyncClient (direct)
                             └─ otherwise            → OfflineCache (durable queue)
                                                        ↑ drained by SyncCoordinator
    food lookup ─ lookup_food ─ online → fetch + cache_food_item
                              └ offline → lookup_food_item

Storage: Redis on the device by default, or PostgreSQL when pg_dsn is set.
Sensitive columns pass through EncryptingGateway either way.
"""

import asyncio
import logging
import time
import uuid
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

import httpx
import redis.asyncio

from GutSafe_Sync.gs_shared import errors
from GutSafe_Sync.gs_shared.field_encryptor import FieldEncryptor
from GutSafe_Sync.gs_shared.settings import SyncSettings
from GutSafe_Sync.gs_shared.types import CachedFoodRecord, HealthStatus, ScanOutcome, ScanResult
from GutSafe_Sync.gs_db.connection import create_cache_client
from GutSafe_Sync.gs_db.gateway import PersistenceGateway, RedisGateway
from GutSafe_Sync.gs_db.offline_cache import OfflineCache
from GutSafe_Sync.gs_db.secure_gateway import EncryptingGateway
from GutSafe_Sync.gs_db.stats import CacheReporter
from GutSafe_Sync.gs_server import db as server_db
from GutSafe_Sync.gs_server.gateway import PostgresGateway
from GutSafe_Sync.gs_sync.backoff import BackoffPolicy
from GutSafe_Sync.gs_sync.network_monitor import NetworkMonitor
from GutSafe_Sync.gs_sync.remote_client import RemoteSyncClient
from GutSafe_Sync.gs_sync.sync_coordinator import ScanSubmitter, SyncCoordinator

logger = logging.getLogger(__name__)

FoodFetcher = Callable[[str], Awaitable[Optional[dict[str, Any]]]]


class SyncCore:
    def __init__(
        self,
        settings: Optional[SyncSettings] = None,
        *,
        gateway: Optional[PersistenceGateway] = None,
        redis_client: Optional[redis.asyncio.Redis] = None,
        encryptor: Optional[FieldEncryptor] = None,
        submitter: Optional[ScanSubmitter] = None,
        probe_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or SyncSettings()
        self._gateway = gateway
        self._redis_client = redis_client
        self._encryptor = encryptor
        self._submitter = submitter
        self._probe_client = probe_client
        self._clock = clock

        self._owned: list[Callable[[], Awaitable[None]]] = []
        self.cache: Optional[OfflineCache] = None
        self.monitor: Optional[NetworkMonitor] = None
        self.coordinator: Optional[SyncCoordinator] = None
        self.reporter: Optional[CacheReporter] = None

    # ─── Lifecycle ───

    async def _open_store(self) -> PersistenceGateway:
        if self._gateway is not None:
            return self._gateway

        if self.settings.pg_dsn and self._redis_client is None:
            pool = await server_db.create_pool(self.settings.pg_dsn)
            await server_db.ensure_schema(pool)
            self._owned.append(server_db.close_pool)
            return PostgresGateway(pool)

        if self._redis_client is None:
            self._redis_client = await create_cache_client(
                self.settings.redis_host, self.settings.redis_port, self.settings.redis_db
            )
            self._owned.append(self._redis_client.aclose)
        return RedisGateway(self._redis_client)

    async def init(self) -> None:
        """Open the store, recover interrupted syncs, start probing and draining."""
        s = self.settings
        encryptor = self._encryptor or FieldEncryptor.from_settings(s)
        gateway = EncryptingGateway(await self._open_store(), encryptor)

        self.cache = OfflineCache(gateway, encryptor=encryptor, clock=self._clock)
        await self.cache.recover_interrupted()

        if self._submitter is None:
            client = RemoteSyncClient(s.remote_base_url, timeout=s.submission_timeout_s)
            self._owned.append(client.aclose)
            self._submitter = client

        self.monitor = NetworkMonitor(
            s.probe_url,
            probe_timeout=s.probe_timeout_s,
            probe_interval=s.probe_interval_s,
            debounce=s.probe_debounce_s,
            client=self._probe_client,
            clock=self._clock,
        )
        self.coordinator = SyncCoordinator(
            self.monitor,
            self.cache,
            self._submitter,
            quality_threshold=s.sync_quality_threshold,
            max_attempts=s.max_attempts,
            submission_timeout=s.submission_timeout_s,
            drain_interval=s.drain_interval_s,
            backoff=BackoffPolicy(base_s=s.backoff_base_s, cap_s=s.backoff_cap_s),
            clock=self._clock,
        )
        self.reporter = CacheReporter(self.cache, s.max_attempts)

        await self.coordinator.start()
        await self.monitor.start()
        logger.info("Sync core started (probe %s)", s.probe_url)

    async def shutdown(self) -> None:
        if self.coordinator is not None:
            await self.coordinator.shutdown()
        if self.monitor is not None:
            await self.monitor.stop()
        while self._owned:
            await self._owned.pop()()
        logger.info("Sync core stopped")

    def _require_started(self) -> None:
        if self.cache is None or self.coordinator is None:
            raise errors.ConfigurationError("SyncCore.init() has not been called")

    # ─── Scan flow ───

    async def record_scan(
        self,
        food_key: str,
        analysis_payload: dict[str, Any],
        recorded_at: Optional[int] = None,
    ) -> ScanOutcome:
        """Hand over a completed scan. Returns once it is acknowledged remotely or stored locally."""
        self._require_started()
        result = ScanResult(
            food_key=food_key,
            analysis_payload=analysis_payload,
            recorded_at=recorded_at if recorded_at is not None else int(self._clock() * 1000),
            client_id=str(uuid.uuid4()),
        )

        # older queued scans must reach the remote first
        if self.coordinator.should_sync() and not await self.cache.pending_scans():
            try:
                await asyncio.wait_for(
                    self._submitter.submit(result), timeout=self.coordinator.submission_timeout
                )
                return ScanOutcome(synced=True, queued=None)
            except (errors.SubmissionError, httpx.HTTPError, OSError, asyncio.TimeoutError) as e:
                logger.warning("Direct submit of %s failed, queueing: %s", result.client_id, e)
            except Exception:
                logger.exception("Direct submit of %s raised unexpectedly, queueing", result.client_id)

        queued = await self.cache.enqueue_scan_result(result)
        if self.coordinator.should_sync():
            self.coordinator.trigger_drain()
        return ScanOutcome(synced=False, queued=queued)

    async def lookup_food(self, key: str, fetcher: Optional[FoodFetcher] = None) -> Optional[CachedFoodRecord]:
        self._require_started()
        if fetcher is not None and self.monitor.is_reachable():
            try:
                item = await fetcher(key)
            except (httpx.HTTPError, OSError, asyncio.TimeoutError) as e:
                logger.warning("Food lookup for %s failed, using cache: %s", key, e)
                item = None
            if item:
                return await self.cache.cache_food_item(item, key=key)
        return await self.cache.lookup_food_item(key)

    # ─── Maintenance ───

    async def purge_stale(self, dry_run: bool = False) -> int:
        self._require_started()
        return await self.cache.purge_stale(timedelta(days=self.settings.retention_days), dry_run=dry_run)

    async def health(self) -> HealthStatus:
        self._require_started()
        stats = await self.reporter.get_cache_stats()
        return HealthStatus(
            store_connected=await self.cache.db.ping(),
            reachable=self.monitor.is_reachable(),
            quality_score=self.monitor.current_quality(),
            queue_depth=stats.pending + stats.syncing + stats.failed,
            stuck_entries=stats.stuck,
        )
