"""
NetworkMonitor — reachability and link-quality estimation.

Probes a known endpoint on a fixed cadence, and out of cycle when the
platform reports a connectivity change (coalesced by a short debounce).
Subscribers hear about `online` / `offline` only on an actual transition,
never on a repeated observation of the same state.

Quality score (0-100):
    unreachable                 → 0
    reachable                   → 100 - latency penalty
                                    ≤200 ms: 0, ≤500 ms: 5, ≤1000 ms: 15, slower: 30
    blended with reliability    → 10 points per minute of continuous uptime, max 100,
                                  weighted at RELIABILITY_WEIGHT
"""

import asyncio
import contextlib
import dataclasses
import logging
import time
from typing import Callable, Optional

import httpx

from GutSafe_Sync.gs_shared import config
from GutSafe_Sync.gs_shared.types import ConnectivityEvent, NetworkStatus, ProbeResult

logger = logging.getLogger(__name__)

Listener = Callable[[ConnectivityEvent], None]


def latency_penalty(latency_ms: float) -> int:
    for upper_bound_ms, penalty in config.LATENCY_PENALTIES:
        if latency_ms <= upper_bound_ms:
            return penalty
    return config.LATENCY_MAX_PENALTY


def reliability(uptime_s: float) -> float:
    return min(100.0, max(0.0, uptime_s) / 60 * config.RELIABILITY_PER_MINUTE)


def compute_quality_score(latency_ms: float, reachable: bool, uptime_s: float = 0.0) -> int:
    if not reachable:
        return 0
    score = 100 - latency_penalty(latency_ms)
    blended = score * (1 - config.RELIABILITY_WEIGHT) + reliability(uptime_s) * config.RELIABILITY_WEIGHT
    return int(max(0, min(100, round(blended))))


class NetworkMonitor:
    def __init__(
        self,
        probe_url: str = config.PROBE_URL,
        *,
        probe_timeout: float = config.PROBE_TIMEOUT_SECONDS,
        probe_interval: float = config.PROBE_INTERVAL_SECONDS,
        debounce: float = config.PROBE_DEBOUNCE_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.probe_url = probe_url
        self.probe_timeout = probe_timeout
        self.probe_interval = probe_interval
        self.debounce = debounce
        self._client = client
        self._owns_client = client is None
        self._clock = clock

        self._status = NetworkStatus(reachable=False, quality_score=0, last_online_at=None, last_offline_at=None)
        self._listeners: list[Listener] = []
        self._online = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._debounce_task: Optional[asyncio.Task] = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.probe_timeout)
        return self._client

    # ─── Reads (non-blocking) ───

    def is_reachable(self) -> bool:
        return self._status.reachable

    def current_quality(self) -> int:
        return self._status.quality_score

    def uptime_seconds(self) -> float:
        if not self._status.reachable or self._status.last_online_at is None:
            return 0.0
        return max(0.0, (self._now_ms() - self._status.last_online_at) / 1000)

    @property
    def status(self) -> NetworkStatus:
        return dataclasses.replace(self._status, uptime_seconds=self.uptime_seconds())

    def quality_score(self, latency_ms: float, reachable: bool) -> int:
        return compute_quality_score(latency_ms, reachable, self.uptime_seconds())

    # ─── Observers ───

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a transition listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, kind: str, timestamp: int) -> None:
        event = ConnectivityEvent(kind=kind, status=self.status, timestamp=timestamp)
        logger.info("Network %s (quality %d)", kind, self._status.quality_score)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Connectivity listener %r failed on %s", listener, kind)

    # ─── Probing ───

    async def probe(self) -> ProbeResult:
        """One bounded liveness check. Failures are reported, never raised."""
        started = time.perf_counter()
        try:
            resp = await asyncio.wait_for(self._get_client().get(self.probe_url), timeout=self.probe_timeout)
            reachable = resp.is_success
        except (httpx.HTTPError, asyncio.TimeoutError, OSError) as e:
            logger.debug("Probe of %s failed: %s", self.probe_url, e.__class__.__name__)
            reachable = False
        latency_ms = (time.perf_counter() - started) * 1000
        return ProbeResult(reachable=reachable, latency_ms=latency_ms)

    def record_probe(self, result: ProbeResult) -> NetworkStatus:
        """Fold a probe outcome into the status; emits an event on a state change."""
        now = self._now_ms()
        was_reachable = self._status.reachable

        if result.reachable and not was_reachable:
            self._status.last_online_at = now
            self._online.set()
        elif not result.reachable and was_reachable:
            self._status.last_offline_at = now
            self._online.clear()

        self._status.reachable = result.reachable
        self._status.quality_score = self.quality_score(result.latency_ms, result.reachable)

        if result.reachable != was_reachable:
            self._emit("online" if result.reachable else "offline", now)
        return self.status

    async def refresh(self) -> NetworkStatus:
        return self.record_probe(await self.probe())

    def notify_connectivity_change(self) -> None:
        """Platform connectivity signal. Bursts collapse into one probe per debounce window."""
        if self._debounce_task is not None and not self._debounce_task.done():
            return
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounced_refresh())

    async def _debounced_refresh(self) -> None:
        await asyncio.sleep(self.debounce)
        await self.refresh()

    async def wait_for_connection(self, timeout: float = 30.0) -> bool:
        if self.is_reachable():
            return True
        try:
            await asyncio.wait_for(self._online.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # ─── Lifecycle ───

    async def start(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(self.probe_interval)

    async def stop(self) -> None:
        for task in (self._loop_task, self._debounce_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._loop_task = None
        self._debounce_task = None

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
