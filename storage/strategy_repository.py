"""Strategy records and their append-only execution log."""
import logging
import uuid
from datetime import datetime
from typing import Optional

from shared.schemas import (
    ExecutionLog,
    Strategy,
    StrategyParams,
    StrategyStatus,
    utcnow,
)
from storage.db import Database, to_db_ts
from strategy.firing_rule import sources_for

logger = logging.getLogger(__name__)


class StrategyRepository:
    """CRUD, status queries and conditional status transitions for strategies.

    Every status change is a check-and-set on ``status = 'ACTIVE'`` so that a
    duplicate evaluation can never overwrite a terminal state.
    """

    def __init__(self, db: Database):
        self.db = db

    async def create(self, params: StrategyParams, user_id: Optional[str] = None) -> Strategy:
        now = utcnow()
        strategy = Strategy(
            id=uuid.uuid4().hex,
            user_id=user_id,
            status=StrategyStatus.ACTIVE,
            created_at=now,
            updated_at=now,
            **params.model_dump(),
        )
        async with self.db.transaction() as conn:
            await conn.execute(
                """INSERT INTO strategies
                   (id, owner_address, market_id, sentiment_tag,
                    min_prediction_prob, min_sentiment_score, notional_amount,
                    max_slippage_bps, expiry_timestamp, status,
                    created_at, updated_at, user_id)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    strategy.id, strategy.owner_address, strategy.market_id,
                    strategy.sentiment_tag, strategy.min_prediction_prob,
                    strategy.min_sentiment_score, strategy.notional_amount,
                    strategy.max_slippage_bps, to_db_ts(strategy.expiry_timestamp),
                    strategy.status.value, to_db_ts(now), to_db_ts(now),
                    strategy.user_id,
                ),
            )
        return strategy

    async def get(self, strategy_id: str) -> Optional[Strategy]:
        row = await self.db.fetch_one("SELECT * FROM strategies WHERE id=?", (strategy_id,))
        return Strategy(**row) if row else None

    async def list_by_status(self, status: Optional[StrategyStatus] = None) -> list[Strategy]:
        if status is None:
            rows = await self.db.fetch_all("SELECT * FROM strategies ORDER BY created_at ASC")
        else:
            rows = await self.db.fetch_all(
                "SELECT * FROM strategies WHERE status=? ORDER BY created_at ASC",
                (status.value,),
            )
        return [Strategy(**r) for r in rows]

    async def find_active_for_pair(self, market_id: str, sentiment_tag: str) -> Optional[Strategy]:
        """Active strategy for a (market, tag) pair, registered or still awaiting registration."""
        row = await self.db.fetch_one(
            """SELECT * FROM strategies
               WHERE market_id=? AND sentiment_tag=? AND status=?
               ORDER BY created_at ASC LIMIT 1""",
            (market_id, sentiment_tag, StrategyStatus.ACTIVE.value),
        )
        return Strategy(**row) if row else None

    async def set_external_id(self, strategy_id: str, external_id: str) -> bool:
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE strategies SET external_id=?, updated_at=? WHERE id=?",
                (external_id, to_db_ts(utcnow()), strategy_id),
            )
            return cursor.rowcount > 0

    async def _transition(
        self,
        conn,
        strategy_id: str,
        target: StrategyStatus,
        assignments: str = "",
        params: tuple = (),
        at: Optional[datetime] = None,
    ) -> bool:
        """Check-and-set status change, allowed only from a status that may enter ``target``."""
        sources = sources_for(target)
        placeholders = ", ".join("?" for _ in sources)
        cursor = await conn.execute(
            f"""UPDATE strategies SET status=?, updated_at=?{assignments}
                WHERE id=? AND status IN ({placeholders})""",
            (target.value, to_db_ts(at or utcnow()), *params, strategy_id, *(s.value for s in sources)),
        )
        return cursor.rowcount > 0

    async def mark_expired(self, strategy_id: str) -> bool:
        """ACTIVE -> EXPIRED. Returns False if the strategy was no longer ACTIVE."""
        async with self.db.transaction() as conn:
            return await self._transition(conn, strategy_id, StrategyStatus.EXPIRED)

    async def mark_executed(
        self,
        strategy_id: str,
        tx_ref: Optional[str],
        executed_at: Optional[datetime] = None,
    ) -> bool:
        """ACTIVE -> EXECUTED together with its success log entry, in one transaction.

        Returns False, writing nothing, if the strategy was no longer ACTIVE.
        """
        executed_at = executed_at or utcnow()
        async with self.db.transaction() as conn:
            applied = await self._transition(
                conn,
                strategy_id,
                StrategyStatus.EXECUTED,
                ", last_executed_at=?, last_tx_ref=?",
                (to_db_ts(executed_at), tx_ref),
                at=executed_at,
            )
            if not applied:
                return False
            await conn.execute(
                """INSERT INTO execution_logs (strategy_id, timestamp, success, tx_ref, reason)
                   VALUES (?, ?, 1, ?, NULL)""",
                (strategy_id, to_db_ts(executed_at), tx_ref),
            )
        return True

    async def append_log(
        self,
        strategy_id: str,
        success: bool,
        tx_ref: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> ExecutionLog:
        entry = ExecutionLog(strategy_id=strategy_id, success=success, tx_ref=tx_ref, reason=reason)
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                """INSERT INTO execution_logs (strategy_id, timestamp, success, tx_ref, reason)
                   VALUES (?, ?, ?, ?, ?)""",
                (strategy_id, to_db_ts(entry.timestamp), 1 if success else 0, tx_ref, reason),
            )
            entry.id = cursor.lastrowid
        return entry

    async def count_logs(self, strategy_id: str) -> int:
        row = await self.db.fetch_one(
            "SELECT COUNT(*) AS n FROM execution_logs WHERE strategy_id=?", (strategy_id,)
        )
        return row["n"]

    async def list_logs(self, strategy_id: str, limit: Optional[int] = None) -> list[ExecutionLog]:
        """Execution log for a strategy, newest first."""
        sql = "SELECT * FROM execution_logs WHERE strategy_id=? ORDER BY timestamp DESC, id DESC"
        params: tuple = (strategy_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        rows = await self.db.fetch_all(sql, params)
        return [ExecutionLog(**r) for r in rows]

    async def delete(self, strategy_id: str) -> bool:
        """Delete a strategy; its execution log goes with it."""
        async with self.db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM strategies WHERE id=?", (strategy_id,))
            return cursor.rowcount > 0
