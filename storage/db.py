"""SQLite database via aiosqlite."""
import asyncio
import aiosqlite
import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from shared.schemas import User, utcnow
from storage.models import ALL_TABLES, CREATE_INDEXES

logger = logging.getLogger(__name__)


def to_db_ts(dt: datetime) -> str:
    """Serialize a datetime as a sortable UTC ISO-8601 string.

    Naive datetimes are taken to be UTC. Fixed microsecond precision keeps
    lexical order equal to chronological order.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


class Database:
    """Async SQLite connection shared by the signal store and strategy repository."""

    def __init__(self, db_path: str = "data/sentimentflow.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def init(self):
        """Open the connection and create tables."""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        for ddl in ALL_TABLES:
            await self._db.execute(ddl)
        for ddl in CREATE_INDEXES:
            await self._db.execute(ddl)
        await self._db.commit()
        logger.info("Database initialized", extra={"path": self.db_path})

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not initialized")
        return self._db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialize writers on the shared connection; commit on success, roll back on error."""
        async with self._write_lock:
            try:
                yield self.conn
            except BaseException:
                await self.conn.rollback()
                raise
            else:
                await self.conn.commit()

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        cursor = await self.conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[dict]:
        cursor = await self.conn.execute(sql, params)
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def get_or_create_user(self, address: str) -> User:
        """Return the user owning ``address``, creating it on first sight."""
        row = await self.fetch_one("SELECT * FROM users WHERE address=?", (address,))
        if row:
            return User(**row)
        now = to_db_ts(utcnow())
        user_id = uuid.uuid4().hex
        async with self.transaction() as conn:
            await conn.execute(
                """INSERT INTO users (id, address, created_at, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(address) DO NOTHING""",
                (user_id, address, now, now),
            )
        row = await self.fetch_one("SELECT * FROM users WHERE address=?", (address,))
        return User(**row)

    async def delete_user(self, user_id: str) -> bool:
        """Delete a user; owned strategies keep existing with ``user_id`` nulled."""
        async with self.transaction() as conn:
            cursor = await conn.execute("DELETE FROM users WHERE id=?", (user_id,))
            return cursor.rowcount > 0
