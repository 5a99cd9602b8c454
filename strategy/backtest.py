"""Backtest: replay historical snapshots through the live firing rule."""
import bisect
import logging
from datetime import datetime
from typing import Callable, Optional

from shared.schemas import BacktestPoint, BacktestResult, Strategy, utcnow
from storage.signal_store import SignalStore
from strategy.firing_rule import evaluate_eligibility
from strategy.thresholds import DEFAULT_BACKTEST_WINDOW

logger = logging.getLogger(__name__)


class BacktestSimulator:
    """Answers "would this strategy have fired?" for each historical market point.

    Each market snapshot is paired with the latest sentiment snapshot at or
    before it. Market points with no preceding sentiment are dropped rather
    than counted as not-eligible. Never calls settlement or writes state.
    """

    def __init__(self, signals: SignalStore, clock: Callable[[], datetime] = utcnow):
        self.signals = signals
        self.clock = clock

    async def simulate(
        self,
        strategy: Strategy,
        from_timestamp: Optional[datetime] = None,
        to_timestamp: Optional[datetime] = None,
    ) -> BacktestResult:
        end = to_timestamp or self.clock()
        start = from_timestamp or end - DEFAULT_BACKTEST_WINDOW

        markets = await self.signals.market_snapshots_between(strategy.market_id, start, end)
        sentiments = await self.signals.sentiment_snapshots_between(strategy.sentiment_tag, start, end)
        sentiment_times = [s.timestamp for s in sentiments]

        result = BacktestResult(
            strategy_id=strategy.id,
            from_timestamp=start,
            to_timestamp=end,
        )
        for market in markets:
            # rightmost sentiment with timestamp <= market timestamp
            idx = bisect.bisect_right(sentiment_times, market.timestamp) - 1
            if idx < 0:
                continue
            sentiment = sentiments[idx]
            eligibility = evaluate_eligibility(strategy, market.probability, sentiment.score)
            if eligibility.eligible:
                result.total_executions += 1
            result.execution_points.append(
                BacktestPoint(
                    timestamp=market.timestamp,
                    probability=market.probability,
                    sentiment=sentiment.score,
                    would_execute=eligibility.eligible,
                )
            )

        logger.info(
            "Backtest complete",
            extra={
                "strategy_id": strategy.id,
                "points": len(result.execution_points),
                "total_executions": result.total_executions,
            },
        )
        return result
