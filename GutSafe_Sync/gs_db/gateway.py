"""
PersistenceGateway — one query interface over whichever store is configured.

Rows are plain dicts of JSON-compatible values. A row is addressed by
(table, key); tables need no schema up front.

    RedisGateway     embedded on-device store (this module)
    PostgresGateway  client/server store (gs_server.gateway)
"""

import abc
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

import redis
import redis.asyncio

from GutSafe_Sync.gs_shared import config, errors

T = TypeVar("T")


@dataclass(frozen=True)
class Query:
    table:      str
    order_by:   tuple[str, ...] = ()
    descending: bool = False
    limit:      Optional[int] = None


def row_matches(row: Mapping[str, Any], params: Optional[Mapping[str, Any]]) -> bool:
    """Equality filter; a list/tuple/set value matches any of its members."""
    if not params:
        return True
    for column, expected in params.items():
        actual = row.get(column)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def order_and_limit(rows: list[dict], query: Query) -> list[dict]:
    if query.order_by:
        rows.sort(
            key=lambda r: tuple((r.get(c) is not None, r.get(c)) for c in query.order_by),
            reverse=query.descending,
        )
    if query.limit is not None:
        rows = rows[: query.limit]
    return rows


class Transaction(abc.ABC):
    """Write handle passed to the callback of PersistenceGateway.transaction()."""

    @abc.abstractmethod
    async def upsert(self, table: str, key: str, row: dict) -> None: ...

    @abc.abstractmethod
    async def delete(self, table: str, key: str) -> None: ...


class PersistenceGateway(abc.ABC):

    @abc.abstractmethod
    async def execute(self, query: Query, params: Optional[Mapping[str, Any]] = None) -> list[dict]: ...

    @abc.abstractmethod
    async def get(self, table: str, key: str) -> Optional[dict]: ...

    @abc.abstractmethod
    async def transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run fn with a write handle; its writes land all together or not at all."""

    @abc.abstractmethod
    async def delete(self, table: str, key: str) -> bool: ...

    @abc.abstractmethod
    async def next_id(self, sequence: str) -> int: ...

    @abc.abstractmethod
    async def clear_table(self, table: str) -> int: ...

    @abc.abstractmethod
    async def ping(self) -> bool: ...

    @abc.abstractmethod
    async def close(self) -> None: ...

    async def upsert(self, table: str, key: str, row: dict) -> None:
        async def _write(tx: Transaction) -> None:
            await tx.upsert(table, key, row)

        await self.transaction(_write)


class _RedisTransaction(Transaction):
    def __init__(self, gateway: "RedisGateway", pipe):
        self._gw = gateway
        self._pipe = pipe

    async def upsert(self, table: str, key: str, row: dict) -> None:
        if not row:
            raise ValueError("cannot store an empty row")
        row_key = self._gw._row_key(table, key)
        self._pipe.delete(row_key)
        self._pipe.hset(row_key, mapping=self._gw._serialize_row(row))
        self._pipe.sadd(self._gw._idx_key(table), key)

    async def delete(self, table: str, key: str) -> None:
        self._pipe.delete(self._gw._row_key(table, key))
        self._pipe.srem(self._gw._idx_key(table), key)


class RedisGateway(PersistenceGateway):
    """Rows are hashes of JSON-encoded columns; a set per table indexes its keys."""

    def __init__(self, client: redis.asyncio.Redis):
        self.db: redis.asyncio.Redis = client

    def _row_key(self, table: str, key: str) -> str:
        return f"{config.ROW_KEY_PREFIX}:{table}:{key}"

    def _idx_key(self, table: str) -> str:
        return f"{config.IDX_KEY_PREFIX}:{table}"

    def _seq_key(self, sequence: str) -> str:
        return f"{config.SEQ_KEY_PREFIX}:{sequence}"

    def _serialize_row(self, row: dict) -> dict:
        return {column: json.dumps(value) for column, value in row.items()}

    def _deserialize_row(self, data: dict[bytes, bytes]) -> dict:
        return {column.decode(): json.loads(value) for column, value in data.items()}

    async def execute(self, query: Query, params: Optional[Mapping[str, Any]] = None) -> list[dict]:
        try:
            keys = await self.db.smembers(self._idx_key(query.table))
            if not keys:
                return []

            pipe = self.db.pipeline(transaction=False)
            for key in keys:
                pipe.hgetall(self._row_key(query.table, key.decode()))
            results = await pipe.execute()
        except redis.exceptions.RedisError as e:
            raise errors.PersistenceError(f"execute {query.table}") from e

        rows = [self._deserialize_row(data) for data in results if data]
        rows = [row for row in rows if row_matches(row, params)]
        return order_and_limit(rows, query)

    async def get(self, table: str, key: str) -> Optional[dict]:
        try:
            data = await self.db.hgetall(self._row_key(table, key))
        except redis.exceptions.RedisError as e:
            raise errors.PersistenceError(f"get {table}") from e
        if not data:
            return None
        return self._deserialize_row(data)

    async def transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        async with self.db.pipeline(transaction=True) as pipe:
            result = await fn(_RedisTransaction(self, pipe))
            try:
                await pipe.execute()
            except redis.exceptions.RedisError as e:
                raise errors.PersistenceError("transaction") from e
        return result

    async def delete(self, table: str, key: str) -> bool:
        try:
            pipe = self.db.pipeline(transaction=True)
            pipe.delete(self._row_key(table, key))
            pipe.srem(self._idx_key(table), key)
            deleted, _ = await pipe.execute()
            return bool(deleted)
        except redis.exceptions.RedisError as e:
            raise errors.PersistenceError(f"delete {table}") from e

    async def next_id(self, sequence: str) -> int:
        try:
            return int(await self.db.incr(self._seq_key(sequence)))
        except redis.exceptions.RedisError as e:
            raise errors.PersistenceError(f"next_id {sequence}") from e

    async def clear_table(self, table: str) -> int:
        try:
            keys = await self.db.smembers(self._idx_key(table))
            pipe = self.db.pipeline(transaction=True)
            for key in keys:
                pipe.delete(self._row_key(table, key.decode()))
            pipe.delete(self._idx_key(table))
            await pipe.execute()
            return len(keys)
        except redis.exceptions.RedisError as e:
            raise errors.PersistenceError(f"clear_table {table}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self.db.ping())
        except redis.exceptions.RedisError:
            return False

    async def close(self) -> None:
        await self.db.aclose()
