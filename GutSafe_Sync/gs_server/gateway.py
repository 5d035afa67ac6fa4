"""
PostgresGateway — PersistenceGateway over a relational store.

Every logical table lives in one JSONB `documents` table keyed by
(table_name, doc_key); id sequences live in `sequences`. Filters and
ordering are pushed down as JSONB expressions.
"""

import json
from typing import Any, Awaitable, Callable, Mapping, Optional

import asyncpg

from GutSafe_Sync.gs_shared import errors
from GutSafe_Sync.gs_db.gateway import PersistenceGateway, Query, T, Transaction


class _PostgresTransaction(Transaction):
    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn

    async def upsert(self, table: str, key: str, row: dict) -> None:
        if not row:
            raise ValueError("cannot store an empty row")
        await self._conn.execute(
            """
            INSERT INTO documents (table_name, doc_key, doc)
            VALUES ($1, $2, $3::jsonb)
            ON CONFLICT (table_name, doc_key)
                DO UPDATE SET doc = EXCLUDED.doc, updated_at = NOW()
            """,
            table,
            key,
            json.dumps(row),
        )

    async def delete(self, table: str, key: str) -> None:
        await self._conn.execute(
            "DELETE FROM documents WHERE table_name = $1 AND doc_key = $2",
            table,
            key,
        )


class PostgresGateway(PersistenceGateway):

    def __init__(self, pool: asyncpg.Pool, *, owns_pool: bool = False):
        self.pool = pool
        self._owns_pool = owns_pool

    def _build_select(self, query: Query, params: Optional[Mapping[str, Any]]) -> tuple[str, list]:
        sql = ["SELECT doc::text AS doc FROM documents WHERE table_name = $1"]
        args: list = [query.table]

        for column, expected in (params or {}).items():
            args.append(column)
            column_ref = f"doc -> ${len(args)}::text"
            if isinstance(expected, (list, tuple, set, frozenset)):
                args.append([json.dumps(v) for v in expected])
                sql.append(f"AND {column_ref} = ANY(${len(args)}::jsonb[])")
            else:
                args.append(json.dumps(expected))
                sql.append(f"AND {column_ref} = ${len(args)}::jsonb")

        if query.order_by:
            direction = "DESC" if query.descending else "ASC"
            terms = []
            for column in query.order_by:
                args.append(column)
                terms.append(f"doc -> ${len(args)}::text {direction}")
            sql.append("ORDER BY " + ", ".join(terms))

        if query.limit is not None:
            args.append(query.limit)
            sql.append(f"LIMIT ${len(args)}")

        return " ".join(sql), args

    async def execute(self, query: Query, params: Optional[Mapping[str, Any]] = None) -> list[dict]:
        sql, args = self._build_select(query, params)
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(sql, *args)
        except (asyncpg.PostgresError, OSError) as e:
            raise errors.PersistenceError(f"execute {query.table}") from e
        return [json.loads(row["doc"]) for row in rows]

    async def get(self, table: str, key: str) -> Optional[dict]:
        try:
            async with self.pool.acquire() as conn:
                doc = await conn.fetchval(
                    "SELECT doc::text FROM documents WHERE table_name = $1 AND doc_key = $2",
                    table,
                    key,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise errors.PersistenceError(f"get {table}") from e
        if doc is None:
            return None
        return json.loads(doc)

    async def transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    return await fn(_PostgresTransaction(conn))
        except (asyncpg.PostgresError, OSError) as e:
            raise errors.PersistenceError("transaction") from e

    async def delete(self, table: str, key: str) -> bool:
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    "DELETE FROM documents WHERE table_name = $1 AND doc_key = $2",
                    table,
                    key,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise errors.PersistenceError(f"delete {table}") from e
        # result is "DELETE N" string
        return int(result.split()[-1]) > 0

    async def next_id(self, sequence: str) -> int:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(
                    """
                    INSERT INTO sequences (name, value) VALUES ($1, 1)
                    ON CONFLICT (name) DO UPDATE SET value = sequences.value + 1
                    RETURNING value
                    """,
                    sequence,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise errors.PersistenceError(f"next_id {sequence}") from e

    async def clear_table(self, table: str) -> int:
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute("DELETE FROM documents WHERE table_name = $1", table)
        except (asyncpg.PostgresError, OSError) as e:
            raise errors.PersistenceError(f"clear_table {table}") from e
        return int(result.split()[-1])

    async def ping(self) -> bool:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except (asyncpg.PostgresError, OSError):
            return False

    async def close(self) -> None:
        if self._owns_pool:
            await self.pool.close()
