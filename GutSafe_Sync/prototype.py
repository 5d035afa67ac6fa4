"""
GutSafe Sync Demo — offline scan capture, reconnect, drain.

Requires Redis 7 on localhost:6379 and PostgreSQL 16 reachable at
gs_server.config.PG_DSN. The ingest API runs in-process.

Run:
    python -m GutSafe_Sync.prototype
"""

import asyncio
import logging

import httpx

from GutSafe_Sync.gs_db.connection import create_cache_client
from GutSafe_Sync.gs_db.gateway import RedisGateway
from GutSafe_Sync.gs_server import config as srv_config
from GutSafe_Sync.gs_server import db
from GutSafe_Sync.gs_server.api import app
from GutSafe_Sync.gs_server.scan_ingest import ScanIngestServer
from GutSafe_Sync.gs_shared import config
from GutSafe_Sync.gs_shared.settings import SyncSettings
from GutSafe_Sync.gs_sync.remote_client import RemoteSyncClient
from GutSafe_Sync.sync_core import SyncCore


# ─── ANSI Display Helpers ───

class Display:
    RESET   = "\033[0m"
    BOLD    = "\033[1m"
    DIM     = "\033[2m"

    RED     = "\033[91m"
    GREEN   = "\033[92m"
    YELLOW  = "\033[93m"
    BLUE    = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN    = "\033[96m"

    STATE_COLORS = {
        "PENDING": YELLOW,
        "SYNCING": BLUE,
        "SYNCED":  GREEN,
        "FAILED":  RED,
    }

    @classmethod
    def phase_header(cls, number: int, title: str) -> None:
        line = "═" * 60
        print(f"\n{cls.CYAN}{cls.BOLD}{line}")
        print(f"  PHASE {number} — {title}")
        print(f"{line}{cls.RESET}\n")

    @classmethod
    def arrow(cls, msg: str) -> None:
        print(f"  {cls.BLUE}→{cls.RESET} {msg}")

    @classmethod
    def success(cls, msg: str) -> None:
        print(f"  {cls.GREEN}✓{cls.RESET} {msg}")

    @classmethod
    def stat_row(cls, label: str, value, width: int = 28) -> None:
        print(f"  {label:<{width}} {cls.BOLD}{value}{cls.RESET}")

    @classmethod
    def state_label(cls, state: str) -> str:
        return f"{cls.STATE_COLORS.get(state, '')}{cls.BOLD}{state}{cls.RESET}"

    @classmethod
    def section(cls, title: str) -> None:
        print(f"\n  {cls.MAGENTA}{cls.BOLD}── {title} ──{cls.RESET}")

    @classmethod
    def banner(cls) -> None:
        print(f"""
{cls.CYAN}{cls.BOLD}
    ╔═══════════════════════════════════════════════════╗
    ║     GutSafe — Offline-First Scan Sync Demo        ║
    ║     Encrypted queue, quality-gated draining       ║
    ╚═══════════════════════════════════════════════════╝
{cls.RESET}""")


# ─── Simulated link ───

class Link:
    """Probe endpoint whose reachability the demo flips by hand."""

    def __init__(self):
        self.up = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200 if self.up else 503)


DEMO_SCANS = [
    ("5000112637922", {"risk": "high", "triggers": ["lactose"], "symptoms": ["bloating"]}),
    ("8710398526212", {"risk": "low", "triggers": []}),
    ("4006381333931", {"risk": "medium", "triggers": ["fructan"]}),
]


async def show_queue(core: SyncCore) -> None:
    for entry in await core.cache.scans():
        Display.stat_row(
            f"#{entry.id} {entry.food_key}",
            f"{Display.state_label(entry.sync_state.value)}  attempts={entry.attempts}",
        )


async def phase1_offline(core: SyncCore, link: Link, cache_client):
    Display.phase_header(1, "OFFLINE — Scans Land in the Encrypted Queue")
    link.up = False
    await core.monitor.refresh()
    Display.arrow(f"Reachable: {core.monitor.is_reachable()}  quality={core.monitor.current_quality()}")

    for food_key, payload in DEMO_SCANS:
        outcome = await core.record_scan(food_key, payload)
        Display.success(f"Scan {food_key} queued as #{outcome.queued.id}")

    Display.section("Local queue")
    await show_queue(core)

    Display.section("At rest")
    first = (await core.cache.scans())[0]
    raw = await cache_client.hget(f"{config.ROW_KEY_PREFIX}:{config.SCAN_QUEUE_TABLE}:{first.id}", "analysis_payload")
    Display.stat_row("analysis_payload in Redis:", raw[:60].decode() + "…")


async def phase2_reconnect(core: SyncCore, link: Link, ingest: ScanIngestServer):
    Display.phase_header(2, "RECONNECT — Quality Gate Opens, Queue Drains")
    link.up = True
    await core.monitor.refresh()
    Display.arrow(f"Reachable: {core.monitor.is_reachable()}  quality={core.monitor.current_quality()}")

    result = await core.coordinator.trigger_drain()
    Display.success(f"Drain: attempted={result.attempted} synced={result.synced} failed={result.failed}")

    Display.section("Local queue")
    await show_queue(core)
    Display.section("Remote store")
    Display.stat_row("scan_submissions rows:", await ingest.count_scans())


async def phase3_online(core: SyncCore, ingest: ScanIngestServer):
    Display.phase_header(3, "ONLINE — Direct Submission, Idempotent Ingest")
    outcome = await core.record_scan("5449000000996", {"risk": "low", "triggers": []})
    if outcome.synced:
        Display.success("Scan acknowledged directly, never queued")
    else:
        Display.arrow(f"Scan queued as #{outcome.queued.id}")
    Display.stat_row("scan_submissions rows:", await ingest.count_scans())


async def phase4_maintenance(core: SyncCore):
    Display.phase_header(4, "MAINTENANCE — Health and Retention")
    health = await core.health()
    Display.stat_row("Store connected:", health.store_connected)
    Display.stat_row("Reachable:", health.reachable)
    Display.stat_row("Quality score:", health.quality_score)
    Display.stat_row("Queue depth:", health.queue_depth)
    Display.stat_row("Stuck entries:", health.stuck_entries)
    would_purge = await core.purge_stale(dry_run=True)
    Display.arrow(f"Synced entries older than {core.settings.retention_days} days: {would_purge}")


async def main():
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    Display.banner()

    Display.arrow(f"Connecting to Redis (db={config.REDIS_CACHE_DB})…")
    cache_client = await create_cache_client()

    Display.arrow(f"Connecting to PostgreSQL ({srv_config.PG_DSN})…")
    pool = await db.create_pool(srv_config.PG_DSN)
    await db.ensure_schema(pool)
    ingest = ScanIngestServer(pool)

    # Clean slate for demo
    Display.arrow("Flushing demo databases…")
    await cache_client.flushdb()
    async with pool.acquire() as conn:
        await conn.execute("DELETE FROM scan_submissions")

    link = Link()
    probe_client = httpx.AsyncClient(transport=httpx.MockTransport(link.handler))
    api_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://ingest")

    settings = SyncSettings(
        _env_file=None,
        encryption_secret="demo-device-secret",
        probe_url="http://ingest/v1/health",
        probe_interval_s=3600,
        drain_interval_s=3600,
    )
    core = SyncCore(
        settings,
        gateway=RedisGateway(cache_client),
        submitter=RemoteSyncClient(client=api_client),
        probe_client=probe_client,
    )
    Display.success("Infrastructure ready\n")

    try:
        await core.init()
        await phase1_offline(core, link, cache_client)
        await phase2_reconnect(core, link, ingest)
        await phase3_online(core, ingest)
        await phase4_maintenance(core)

        print(f"\n{Display.GREEN}{Display.BOLD}  ══ Demo complete ══{Display.RESET}\n")

    finally:
        await core.shutdown()
        await probe_client.aclose()
        await api_client.aclose()
        await cache_client.aclose()
        await db.close_pool()


if __name__ == "__main__":
    asyncio.run(main())
