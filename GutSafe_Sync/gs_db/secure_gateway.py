"""
EncryptingGateway — wraps any PersistenceGateway so sensitive columns are
sealed on the way in and opened on the way out.

The wrapped store only ever sees encrypted envelopes for the configured
columns, whichever component issues the write.
"""

from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from GutSafe_Sync.gs_shared import config
from GutSafe_Sync.gs_shared.field_encryptor import FieldEncryptor
from GutSafe_Sync.gs_db.gateway import PersistenceGateway, Query, T, Transaction


class _EncryptingTransaction(Transaction):
    def __init__(self, gateway: "EncryptingGateway", inner: Transaction):
        self._gw = gateway
        self._inner = inner

    async def upsert(self, table: str, key: str, row: dict) -> None:
        await self._inner.upsert(table, key, self._gw._seal(table, row))

    async def delete(self, table: str, key: str) -> None:
        await self._inner.delete(table, key)


class EncryptingGateway(PersistenceGateway):

    def __init__(
        self,
        inner: PersistenceGateway,
        encryptor: FieldEncryptor,
        sensitive_fields: Optional[Mapping[str, Iterable[str]]] = None,
    ):
        self.inner = inner
        self.encryptor = encryptor
        fields = config.TABLE_SENSITIVE_FIELDS if sensitive_fields is None else sensitive_fields
        self.sensitive_fields = {table: tuple(names) for table, names in fields.items()}

    def _seal(self, table: str, row: dict) -> dict:
        names = self.sensitive_fields.get(table)
        if not names:
            return row
        return self.encryptor.encrypt_record(row, names)

    async def execute(self, query: Query, params: Optional[Mapping[str, Any]] = None) -> list[dict]:
        rows = await self.inner.execute(query, params)
        return [self.encryptor.decrypt_record(row) for row in rows]

    async def get(self, table: str, key: str) -> Optional[dict]:
        row = await self.inner.get(table, key)
        if row is None:
            return None
        return self.encryptor.decrypt_record(row)

    async def transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        async def _wrapped(tx: Transaction) -> T:
            return await fn(_EncryptingTransaction(self, tx))

        return await self.inner.transaction(_wrapped)

    async def delete(self, table: str, key: str) -> bool:
        return await self.inner.delete(table, key)

    async def next_id(self, sequence: str) -> int:
        return await self.inner.next_id(sequence)

    async def clear_table(self, table: str) -> int:
        return await self.inner.clear_table(table)

    async def ping(self) -> bool:
        return await self.inner.ping()

    async def close(self) -> None:
        await self.inner.close()
