"""Append-only store of market probability and sentiment snapshots."""
import logging
from datetime import datetime
from typing import Optional

from shared.schemas import MarketSnapshot, SentimentSnapshot
from storage.db import Database, to_db_ts

logger = logging.getLogger(__name__)

# Rank snapshots per key, newest first; callers append a WHERE clause and keep rn = 1.
_LATEST_MARKET_SQL = """SELECT *, ROW_NUMBER() OVER (
                             PARTITION BY market_id ORDER BY timestamp DESC, id DESC
                         ) AS rn
                         FROM market_snapshots"""
_LATEST_SENTIMENT_SQL = """SELECT *, ROW_NUMBER() OVER (
                                PARTITION BY tag ORDER BY timestamp DESC, id DESC
                            ) AS rn
                            FROM sentiment_snapshots"""


class SignalStore:
    """Reads and appends market and sentiment snapshots."""

    def __init__(self, db: Database):
        self.db = db

    async def append_market_snapshots(self, snapshots: list[MarketSnapshot]) -> int:
        if not snapshots:
            return 0
        async with self.db.transaction() as conn:
            await conn.executemany(
                "INSERT INTO market_snapshots (market_id, timestamp, probability) VALUES (?, ?, ?)",
                [(s.market_id, to_db_ts(s.timestamp), s.probability) for s in snapshots],
            )
        return len(snapshots)

    async def append_sentiment_snapshots(self, snapshots: list[SentimentSnapshot]) -> int:
        if not snapshots:
            return 0
        async with self.db.transaction() as conn:
            await conn.executemany(
                "INSERT INTO sentiment_snapshots (tag, timestamp, score) VALUES (?, ?, ?)",
                [(s.tag, to_db_ts(s.timestamp), s.score) for s in snapshots],
            )
        return len(snapshots)

    async def latest_market_snapshot(self, market_id: str) -> Optional[MarketSnapshot]:
        row = await self.db.fetch_one(
            """SELECT * FROM market_snapshots WHERE market_id=?
               ORDER BY timestamp DESC, id DESC LIMIT 1""",
            (market_id,),
        )
        return MarketSnapshot(**row) if row else None

    async def latest_sentiment_snapshot(self, tag: str) -> Optional[SentimentSnapshot]:
        row = await self.db.fetch_one(
            """SELECT * FROM sentiment_snapshots WHERE tag=?
               ORDER BY timestamp DESC, id DESC LIMIT 1""",
            (tag,),
        )
        return SentimentSnapshot(**row) if row else None

    async def latest_market_snapshots_since(self, since: datetime) -> list[MarketSnapshot]:
        """Most recent snapshot per market with timestamp >= ``since``."""
        rows = await self.db.fetch_all(
            f"""SELECT id, market_id, timestamp, probability FROM (
                   {_LATEST_MARKET_SQL} WHERE timestamp >= ?
               ) WHERE rn = 1
               ORDER BY timestamp DESC, market_id ASC""",
            (to_db_ts(since),),
        )
        return [MarketSnapshot(**r) for r in rows]

    async def latest_market_snapshots(
        self, market_id: Optional[str] = None, limit: int = 100, offset: int = 0
    ) -> list[MarketSnapshot]:
        """One page of the most recent snapshot per market, newest first."""
        where, params = "", ()
        if market_id:
            where, params = "WHERE market_id = ?", (market_id,)
        rows = await self.db.fetch_all(
            f"""SELECT id, market_id, timestamp, probability FROM (
                   {_LATEST_MARKET_SQL} {where}
               ) WHERE rn = 1
               ORDER BY timestamp DESC, market_id ASC
               LIMIT ? OFFSET ?""",
            params + (limit, offset),
        )
        return [MarketSnapshot(**r) for r in rows]

    async def latest_sentiment_snapshots_since(
        self, since: datetime, min_score: Optional[float] = None
    ) -> list[SentimentSnapshot]:
        """Most recent snapshot per tag with timestamp >= ``since``.

        With ``min_score``, only snapshots scoring strictly above it are
        considered, so a tag's latest qualifying snapshot is returned even if a
        newer one fell below the bar.
        """
        where = "WHERE timestamp >= ?"
        params: tuple = (to_db_ts(since),)
        if min_score is not None:
            where += " AND score > ?"
            params += (min_score,)
        rows = await self.db.fetch_all(
            f"""SELECT id, tag, timestamp, score FROM (
                   {_LATEST_SENTIMENT_SQL} {where}
               ) WHERE rn = 1
               ORDER BY timestamp DESC, tag ASC""",
            params,
        )
        return [SentimentSnapshot(**r) for r in rows]

    async def sentiment_timeline(
        self,
        tag: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[SentimentSnapshot]:
        """Up to ``limit`` snapshots for a tag within optional bounds, newest first."""
        sql = "SELECT * FROM sentiment_snapshots WHERE tag=?"
        params: tuple = (tag,)
        if start is not None:
            sql += " AND timestamp >= ?"
            params += (to_db_ts(start),)
        if end is not None:
            sql += " AND timestamp <= ?"
            params += (to_db_ts(end),)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        rows = await self.db.fetch_all(sql, params + (limit,))
        return [SentimentSnapshot(**r) for r in rows]

    async def market_snapshots_between(
        self, market_id: str, start: datetime, end: datetime
    ) -> list[MarketSnapshot]:
        rows = await self.db.fetch_all(
            """SELECT * FROM market_snapshots
               WHERE market_id=? AND timestamp >= ? AND timestamp <= ?
               ORDER BY timestamp ASC, id ASC""",
            (market_id, to_db_ts(start), to_db_ts(end)),
        )
        return [MarketSnapshot(**r) for r in rows]

    async def sentiment_snapshots_between(
        self, tag: str, start: datetime, end: datetime
    ) -> list[SentimentSnapshot]:
        rows = await self.db.fetch_all(
            """SELECT * FROM sentiment_snapshots
               WHERE tag=? AND timestamp >= ? AND timestamp <= ?
               ORDER BY timestamp ASC, id ASC""",
            (tag, to_db_ts(start), to_db_ts(end)),
        )
        return [SentimentSnapshot(**r) for r in rows]
