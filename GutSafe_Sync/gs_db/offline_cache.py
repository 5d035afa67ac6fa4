"""
OfflineCache — durable food-item cache and FIFO queue of scans awaiting sync.

Owns the lifetime of CachedFoodRecord and QueuedScanResult. Every mutation
is a single gateway transaction, and persistence failures propagate to the
caller as PersistenceError: a scan is only acknowledged once it is stored.
"""

import logging
import time
from datetime import timedelta
from typing import Callable, Optional

from GutSafe_Sync.gs_shared import config, errors
from GutSafe_Sync.gs_shared.field_encryptor import FieldEncryptor
from GutSafe_Sync.gs_shared.types import CachedFoodRecord, QueuedScanResult, ScanResult, SyncState
from GutSafe_Sync.gs_db.gateway import PersistenceGateway, Query, Transaction

logger = logging.getLogger(__name__)

UNSYNCED_STATES = (SyncState.PENDING.value, SyncState.SYNCING.value, SyncState.FAILED.value)
RETRYABLE_STATES = (SyncState.PENDING.value, SyncState.FAILED.value)


def canonical_food_key(item: dict) -> str:
    for field in ("barcode", "id", "key"):
        value = item.get(field)
        if value:
            return str(value)
    raise ValueError("food item has no barcode or identifier")


class OfflineCache:
    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        encryptor: Optional[FieldEncryptor] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.db = gateway
        self.encryptor = encryptor
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ─── Row mapping ───

    def _serialize_food(self, record: CachedFoodRecord) -> dict:
        return {"key": record.key, "payload": record.payload, "cached_at": record.cached_at}

    def _deserialize_food(self, row: dict) -> CachedFoodRecord:
        return CachedFoodRecord(key=row["key"], payload=row["payload"], cached_at=int(row["cached_at"]))

    def _serialize_scan(self, entry: QueuedScanResult) -> dict:
        return {
            "id": entry.id,
            "client_id": entry.client_id,
            "food_key": entry.food_key,
            "analysis_payload": entry.analysis_payload,
            "recorded_at": entry.recorded_at,
            "sync_state": entry.sync_state.value,
            "attempts": entry.attempts,
            "last_error": entry.last_error,
            "next_attempt_at": entry.next_attempt_at,
            "synced_at": entry.synced_at,
        }

    def _deserialize_scan(self, row: dict) -> QueuedScanResult:
        state = row["sync_state"]
        if state not in config.VALID_SYNC_STATES:
            raise errors.InvalidSyncStateError(state)
        return QueuedScanResult(
            id=int(row["id"]),
            client_id=row["client_id"],
            food_key=row["food_key"],
            analysis_payload=row["analysis_payload"],
            recorded_at=int(row["recorded_at"]),
            sync_state=SyncState(state),
            attempts=int(row["attempts"]),
            last_error=row.get("last_error"),
            next_attempt_at=int(row.get("next_attempt_at") or 0),
            synced_at=row.get("synced_at"),
        )

    async def _write_scan(self, entry: QueuedScanResult) -> None:
        row = self._serialize_scan(entry)

        async def _write(tx: Transaction) -> None:
            await tx.upsert(config.SCAN_QUEUE_TABLE, str(entry.id), row)

        await self.db.transaction(_write)

    # ─── Food items ───

    async def cache_food_item(self, item: dict, key: Optional[str] = None) -> CachedFoodRecord:
        """Upsert a food item; the newest lookup of a key wins."""
        record = CachedFoodRecord(
            key=key or canonical_food_key(item),
            payload=dict(item),
            cached_at=self._now_ms(),
        )
        await self.db.upsert(config.FOOD_TABLE, record.key, self._serialize_food(record))
        return record

    async def lookup_food_item(self, key: str) -> Optional[CachedFoodRecord]:
        row = await self.db.get(config.FOOD_TABLE, key)
        if row is None:
            return None
        return self._deserialize_food(row)

    async def search_cached_foods(self, query: str, limit: int = 20) -> list[CachedFoodRecord]:
        """Case-insensitive substring match over names; exact matches first, then A-Z."""
        needle = query.strip().lower()
        if not needle or limit <= 0:
            return []

        matches = []
        for row in await self.db.execute(Query(config.FOOD_TABLE)):
            name = str(row.get("payload", {}).get("name") or "").lower()
            if needle in name:
                matches.append((name != needle, name, row["key"], row))

        matches.sort(key=lambda m: m[:3])
        return [self._deserialize_food(m[3]) for m in matches[:limit]]

    async def food_count(self) -> int:
        return len(await self.db.execute(Query(config.FOOD_TABLE)))

    # ─── Scan queue ───

    async def enqueue_scan_result(self, result: ScanResult) -> QueuedScanResult:
        entry_id = await self.db.next_id(config.SCAN_ID_SEQUENCE)
        entry = QueuedScanResult(
            id=entry_id,
            client_id=result.client_id,
            food_key=result.food_key,
            analysis_payload=result.analysis_payload,
            recorded_at=result.recorded_at,
            sync_state=SyncState.PENDING,
            attempts=0,
        )
        await self._write_scan(entry)
        logger.info("Queued scan %s (food %s) for sync", entry.id, entry.food_key)
        return entry

    async def get_scan(self, entry_id: int) -> QueuedScanResult:
        row = await self.db.get(config.SCAN_QUEUE_TABLE, str(entry_id))
        if row is None:
            raise errors.EntryNotFoundError(entry_id)
        return self._deserialize_scan(row)

    async def scans(self, state: Optional[SyncState] = None) -> list[QueuedScanResult]:
        params = {"sync_state": state.value} if state is not None else None
        rows = await self.db.execute(Query(config.SCAN_QUEUE_TABLE, order_by=("recorded_at", "id")), params)
        return [self._deserialize_scan(row) for row in rows]

    async def pending_scans(self) -> list[QueuedScanResult]:
        """Every entry not yet acknowledged by the remote, oldest first."""
        rows = await self.db.execute(
            Query(config.SCAN_QUEUE_TABLE, order_by=("recorded_at", "id")),
            {"sync_state": UNSYNCED_STATES},
        )
        return [self._deserialize_scan(row) for row in rows]

    async def retryable_scans(self, max_attempts: int, now_ms: Optional[int] = None) -> list[QueuedScanResult]:
        """Pending/failed entries under the attempt ceiling whose backoff has elapsed."""
        now_ms = self._now_ms() if now_ms is None else now_ms
        rows = await self.db.execute(
            Query(config.SCAN_QUEUE_TABLE, order_by=("recorded_at", "id")),
            {"sync_state": RETRYABLE_STATES},
        )
        entries = [self._deserialize_scan(row) for row in rows]
        return [e for e in entries if e.attempts < max_attempts and e.next_attempt_at <= now_ms]

    async def stuck_scans(self, max_attempts: int) -> list[QueuedScanResult]:
        failed = await self.scans(SyncState.FAILED)
        return [e for e in failed if e.attempts >= max_attempts]

    async def mark_syncing(self, entry_id: int) -> QueuedScanResult:
        entry = await self.get_scan(entry_id)
        if entry.sync_state == SyncState.SYNCED:
            raise errors.InvalidSyncStateError(entry.sync_state.value)
        entry.sync_state = SyncState.SYNCING
        await self._write_scan(entry)
        return entry

    async def mark_synced(self, entry_id: int) -> QueuedScanResult:
        entry = await self.get_scan(entry_id)
        if entry.sync_state == SyncState.SYNCED:
            return entry
        entry.sync_state = SyncState.SYNCED
        entry.synced_at = self._now_ms()
        entry.last_error = None
        entry.next_attempt_at = 0
        await self._write_scan(entry)
        return entry

    async def mark_failed(
        self,
        entry_id: int,
        error: Optional[str] = None,
        retry_at: int = 0,
    ) -> QueuedScanResult:
        """Record a failed attempt. The entry stays queued."""
        entry = await self.get_scan(entry_id)
        if entry.sync_state == SyncState.SYNCED:
            raise errors.InvalidSyncStateError(entry.sync_state.value)
        entry.sync_state = SyncState.FAILED
        entry.attempts += 1
        entry.last_error = error
        entry.next_attempt_at = retry_at
        await self._write_scan(entry)
        return entry

    async def reset_attempts(self, entry_id: int) -> QueuedScanResult:
        entry = await self.get_scan(entry_id)
        if entry.sync_state == SyncState.SYNCED:
            return entry
        entry.sync_state = SyncState.PENDING
        entry.attempts = 0
        entry.next_attempt_at = 0
        await self._write_scan(entry)
        return entry

    async def recover_interrupted(self) -> int:
        """Return entries left SYNCING by a crash to PENDING."""
        interrupted = await self.scans(SyncState.SYNCING)
        for entry in interrupted:
            entry.sync_state = SyncState.PENDING
            await self._write_scan(entry)
        if interrupted:
            logger.info("Recovered %d interrupted sync entries", len(interrupted))
        return len(interrupted)

    async def count_by_state(self) -> dict[SyncState, int]:
        counts = {state: 0 for state in SyncState}
        for entry in await self.scans():
            counts[entry.sync_state] += 1
        return counts

    # ─── Maintenance ───

    async def purge_stale(
        self,
        older_than: timedelta = timedelta(days=config.SYNCED_RETENTION_DAYS),
        *,
        dry_run: bool = False,
    ) -> int:
        """Evict SYNCED entries older than the retention window.

        PENDING, SYNCING and FAILED entries are never evicted, whatever their age.
        The sealed row is deleted from the store; the decrypted copy read back
        here is the only plaintext this method holds, and that is what
        secure_wipe clears.
        """
        cutoff_ms = self._now_ms() - int(older_than.total_seconds() * 1000)
        rows = await self.db.execute(Query(config.SCAN_QUEUE_TABLE), {"sync_state": SyncState.SYNCED.value})

        stale = [row for row in rows if (row.get("synced_at") or row["recorded_at"]) <= cutoff_ms]
        if dry_run:
            return len(stale)

        for row in stale:
            entry_key = str(row["id"])

            async def _evict(tx: Transaction, key: str = entry_key) -> None:
                await tx.delete(config.SCAN_QUEUE_TABLE, key)

            await self.db.transaction(_evict)
            # in-memory plaintext only; the stored envelope is gone
            if self.encryptor is not None:
                self.encryptor.secure_wipe(row, config.TABLE_SENSITIVE_FIELDS[config.SCAN_QUEUE_TABLE])

        if stale:
            logger.info("Purged %d synced entries older than %s", len(stale), older_than)
        return len(stale)

    async def clear_all(self) -> int:
        """Drop cached food items and every synced entry. Unsynced scans are kept."""
        cleared = await self.db.clear_table(config.FOOD_TABLE)
        cleared += await self.purge_stale(timedelta(0))
        return cleared
