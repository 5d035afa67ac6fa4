"""
SyncCoordinator — drains the scan queue when the link allows it.

Flow per entry (oldest first):
    mark_syncing → submit (bounded by submission_timeout) → mark_synced
                                                          ↘ mark_failed + backoff

Triggers: an `online` transition from the monitor, the periodic timer, and
explicit resync. At most one drain runs at a time; an `offline` transition
stops the running drain before its next entry. An entry that reaches
max_attempts stays FAILED until resync() resets it.
"""

import asyncio
import contextlib
import logging
import time
from typing import Callable, Optional, Protocol

import httpx

from GutSafe_Sync.gs_shared import config
from GutSafe_Sync.gs_shared.errors import SubmissionError, SubmissionRejectedError
from GutSafe_Sync.gs_shared.types import ConnectivityEvent, DrainResult, IngestResult, QueuedScanResult, ScanResult
from GutSafe_Sync.gs_db.offline_cache import OfflineCache
from GutSafe_Sync.gs_sync.backoff import BackoffPolicy
from GutSafe_Sync.gs_sync.network_monitor import NetworkMonitor

logger = logging.getLogger(__name__)


class ScanSubmitter(Protocol):
    async def submit(self, entry: QueuedScanResult | ScanResult) -> IngestResult: ...


class SyncCoordinator:
    def __init__(
        self,
        monitor: NetworkMonitor,
        cache: OfflineCache,
        submitter: ScanSubmitter,
        *,
        quality_threshold: int = config.SYNC_QUALITY_THRESHOLD,
        max_attempts: int = config.MAX_ATTEMPTS,
        submission_timeout: float = config.SUBMISSION_TIMEOUT_SECONDS,
        drain_interval: float = config.DRAIN_INTERVAL_SECONDS,
        backoff: Optional[BackoffPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.monitor = monitor
        self.cache = cache
        self.submitter = submitter
        self.quality_threshold = quality_threshold
        self.max_attempts = max_attempts
        self.submission_timeout = submission_timeout
        self.drain_interval = drain_interval
        self.backoff = backoff or BackoffPolicy()
        self._clock = clock

        self._drain_lock = asyncio.Lock()
        self._went_offline = False
        self._stopping = False
        self._drain_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def should_sync(self) -> bool:
        return self.monitor.is_reachable() and self.monitor.current_quality() >= self.quality_threshold

    def _halted(self) -> bool:
        return self._went_offline or self._stopping or not self.should_sync()

    # ─── Triggers ───

    async def start(self) -> None:
        self._stopping = False
        if self._unsubscribe is None:
            self._unsubscribe = self.monitor.subscribe(self._on_connectivity)
        if self._timer_task is None or self._timer_task.done():
            self._timer_task = asyncio.get_running_loop().create_task(self._periodic())

    def _on_connectivity(self, event: ConnectivityEvent) -> None:
        if event.kind == "offline":
            self._went_offline = True
        elif event.kind == "online":
            self.trigger_drain()

    def trigger_drain(self) -> asyncio.Task:
        """Start a background drain, or return the one already running."""
        if self._drain_task is not None and not self._drain_task.done():
            return self._drain_task
        self._drain_task = asyncio.get_running_loop().create_task(self.drain_queue())
        self._drain_task.add_done_callback(_log_drain_failure)
        return self._drain_task

    async def _periodic(self) -> None:
        while True:
            await asyncio.sleep(self.drain_interval)
            if self.should_sync():
                await asyncio.wait([self.trigger_drain()])

    async def shutdown(self) -> None:
        self._stopping = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        if self._timer_task is not None and not self._timer_task.done():
            self._timer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer_task
        self._timer_task = None

        # a running drain stops after its in-flight entry
        if self._drain_task is not None and not self._drain_task.done():
            await asyncio.wait([self._drain_task])
        self._drain_task = None

    # ─── Draining ───

    async def drain_queue(self) -> DrainResult:
        result = DrainResult()
        async with self._drain_lock:
            self._went_offline = False
            if not self.should_sync():
                logger.debug("Sync not permitted (reachable=%s, quality=%d)",
                              self.monitor.is_reachable(), self.monitor.current_quality())
                return result

            while not result.cancelled:
                batch = await self.cache.retryable_scans(self.max_attempts, self._now_ms())
                if not batch:
                    break
                for entry in batch:
                    if self._halted():
                        result.cancelled = True
                        break
                    await self._sync_entry(entry, result)

        if result.attempted:
            logger.info(
                "Drain finished: %d attempted, %d synced, %d failed%s",
                result.attempted, result.synced, result.failed,
                " (cancelled)" if result.cancelled else "",
            )
        return result

    async def _sync_entry(self, entry: QueuedScanResult, result: DrainResult) -> None:
        result.attempted += 1
        await self.cache.mark_syncing(entry.id)

        try:
            await asyncio.wait_for(self.submitter.submit(entry), timeout=self.submission_timeout)
        except asyncio.TimeoutError:
            reason = f"timed out after {self.submission_timeout}s"
        except SubmissionRejectedError as e:
            reason = f"rejected with HTTP {e.status_code}"
        except (SubmissionError, httpx.HTTPError, OSError) as e:
            reason = str(e) or e.__class__.__name__
        except Exception as e:
            # unexpected failure: leave the entry retryable, then surface it
            await self._record_failure(entry, f"unexpected {e.__class__.__name__}", result)
            raise
        else:
            await self.cache.mark_synced(entry.id)
            result.synced += 1
            result.synced_ids.append(entry.id)
            return

        await self._record_failure(entry, reason, result)

    async def _record_failure(self, entry: QueuedScanResult, reason: str, result: DrainResult) -> None:
        attempts = entry.attempts + 1
        delay_ms = self.backoff.delay_ms(attempts)
        failed = await self.cache.mark_failed(entry.id, reason, self._now_ms() + delay_ms)
        result.failed += 1

        if failed.attempts >= self.max_attempts:
            result.newly_stuck += 1
            logger.error("Scan %s gave up after %d attempts: %s", entry.id, failed.attempts, reason)
        else:
            logger.warning("Scan %s attempt %d failed: %s (retry in %.1fs)",
                           entry.id, failed.attempts, reason, delay_ms / 1000)

    # ─── Manual recovery ───

    async def stuck_entries(self) -> list[QueuedScanResult]:
        return await self.cache.stuck_scans(self.max_attempts)

    async def stuck_count(self) -> int:
        return len(await self.stuck_entries())

    async def resync(self, entry_id: Optional[int] = None) -> int:
        """Reset stuck entries (or one entry) to PENDING and drain if permitted."""
        if entry_id is not None:
            targets = [entry_id]
        else:
            targets = [e.id for e in await self.stuck_entries()]

        for target in targets:
            await self.cache.reset_attempts(target)
        if targets:
            logger.info("Reset %d entries for resync", len(targets))

        if self.should_sync():
            await self.drain_queue()
        return len(targets)


def _log_drain_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background drain failed: %s", exc, exc_info=exc)
