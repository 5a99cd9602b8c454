"""Test helpers shared across test files."""
from datetime import datetime, timedelta, timezone

from shared.schemas import MarketSnapshot, SentimentSnapshot, StrategyParams

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def at(minutes: float = 0) -> datetime:
    """NOW shifted by ``minutes``."""
    return NOW + timedelta(minutes=minutes)


def fixed_clock(now: datetime = NOW):
    return lambda: now


def make_params(**overrides) -> StrategyParams:
    defaults = dict(
        owner_address="0xabc",
        market_id="CRYPTO_BTC",
        sentiment_tag="CRYPTO",
        min_prediction_prob=0.5,
        min_sentiment_score=0.0,
        notional_amount=50.0,
        max_slippage_bps=100,
        expiry_timestamp=NOW + timedelta(days=7),
    )
    defaults.update(overrides)
    return StrategyParams(**defaults)


def market(market_id: str, probability: float, minutes: float = 0) -> MarketSnapshot:
    return MarketSnapshot(market_id=market_id, probability=probability, timestamp=at(minutes))


def sentiment(tag: str, score: float, minutes: float = 0) -> SentimentSnapshot:
    return SentimentSnapshot(tag=tag, score=score, timestamp=at(minutes))
