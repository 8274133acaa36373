import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite


class Database:
    """Single shared aiosqlite connection.

    Writers go through `transaction()`, which serializes them so that one
    task's commit or rollback never lands in the middle of another task's
    multi-statement write.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL;")
        await self._conn.execute("PRAGMA synchronous=NORMAL;")
        await self._conn.execute("PRAGMA busy_timeout=30000;")
        await self._conn.execute("PRAGMA foreign_keys=ON;")

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        async with self._write_lock:
            conn = self.conn
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        return list(await self.conn.execute_fetchall(sql, params))

    async def fetch_one(self, sql: str, params: tuple = ()) -> aiosqlite.Row | None:
        rows = await self.conn.execute_fetchall(sql, params)
        return rows[0] if rows else None


class BaseStore:
    SCHEMA = ""

    def __init__(self, db: Database):
        self.db = db

    async def init_schema(self) -> None:
        async with self.db.transaction() as conn:
            await conn.executescript(self.SCHEMA)

    @asynccontextmanager
    async def _writer(self, conn: aiosqlite.Connection | None) -> AsyncIterator[aiosqlite.Connection]:
        # Join the caller's transaction when one is passed in
        if conn is not None:
            yield conn
            return
        async with self.db.transaction() as own:
            yield own
