"""Discovery: turn fresh market + sentiment pairs into new strategies."""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Sequence

from execution.settlement_client import SettlementClient
from shared.schemas import Strategy, StrategyParams, utcnow
from storage.signal_store import SignalStore
from storage.strategy_repository import StrategyRepository
from strategy.registration import register_strategy
from strategy.tag_rules import DEFAULT_RULES, TagRule, resolve_tag
from strategy.thresholds import (
    DEFAULT_EXPIRY,
    DEFAULT_MAX_SLIPPAGE_BPS,
    DEFAULT_MIN_PREDICTION_PROB,
    DEFAULT_MIN_SENTIMENT_SCORE,
    DEFAULT_NOTIONAL_AMOUNT,
    DISCOVERY_LOOKBACK,
    DISCOVERY_MIN_SENTIMENT,
    POST_REGISTRATION_DELAY_SECONDS,
)

logger = logging.getLogger(__name__)


class DiscoveryMatcher:
    """Creates and registers a default strategy for each new (market, tag) opportunity.

    A market is an opportunity when the rule table maps it to a tag that has
    positive sentiment within the lookback window and no ACTIVE strategy
    already covers the pair. Re-running with unchanged data creates nothing.
    """

    def __init__(
        self,
        signals: SignalStore,
        strategies: StrategyRepository,
        settlement: SettlementClient,
        admin_address: str = "0x_ADMIN_WALLET",
        rules: Sequence[TagRule] = DEFAULT_RULES,
        registration_delay: float = POST_REGISTRATION_DELAY_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.signals = signals
        self.strategies = strategies
        self.settlement = settlement
        self.admin_address = admin_address
        self.rules = rules
        self.registration_delay = registration_delay
        self.clock = clock

    async def discover(self) -> list[Strategy]:
        """Scan recent snapshots and return the strategies created on this pass."""
        now = self.clock()
        since = now - DISCOVERY_LOOKBACK
        sentiments = await self.signals.latest_sentiment_snapshots_since(
            since, min_score=DISCOVERY_MIN_SENTIMENT
        )
        markets = await self.signals.latest_market_snapshots_since(since)
        fresh_tags = {s.tag: s for s in sentiments}

        logger.info(
            "Running strategy discovery",
            extra={"markets": len(markets), "positive_tags": len(fresh_tags)},
        )

        created: list[Strategy] = []
        for market in markets:
            tag = resolve_tag(market.market_id, self.rules)
            if tag is None or tag not in fresh_tags:
                continue

            existing = await self.strategies.find_active_for_pair(market.market_id, tag)
            if existing is not None:
                continue

            strategy = await self._create(market.market_id, tag, now)
            created.append(strategy)
            logger.info(
                "Discovered new opportunity",
                extra={
                    "strategy_id": strategy.id,
                    "market_id": market.market_id,
                    "tag": tag,
                    "probability": market.probability,
                    "sentiment": fresh_tags[tag].score,
                },
            )
            await self._register(strategy)

        return created

    async def _create(self, market_id: str, tag: str, now: datetime) -> Strategy:
        params = StrategyParams(
            owner_address=self.admin_address,
            market_id=market_id,
            sentiment_tag=tag,
            min_prediction_prob=DEFAULT_MIN_PREDICTION_PROB,
            min_sentiment_score=DEFAULT_MIN_SENTIMENT_SCORE,
            notional_amount=DEFAULT_NOTIONAL_AMOUNT,
            max_slippage_bps=DEFAULT_MAX_SLIPPAGE_BPS,
            expiry_timestamp=now + DEFAULT_EXPIRY,
        )
        return await self.strategies.create(params)

    async def _register(self, strategy: Strategy) -> None:
        result = await register_strategy(strategy, self.settlement, self.strategies)
        if result.success and self.registration_delay > 0:
            await asyncio.sleep(self.registration_delay)
