"""Sentiment ingestion from Alpha Vantage news and CoinGecko coin data."""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import httpx

from shared.schemas import SentimentSnapshot, utcnow
from storage.signal_store import SignalStore

logger = logging.getLogger(__name__)

ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"
COINGECKO_BASE = "https://api.coingecko.com/api/v3"


@dataclass
class TagSource:
    """Where to look for sentiment on one tag."""
    tag: str
    keywords: list[str]
    sources: list[str] = field(default_factory=lambda: ["alphavantage"])
    crypto_ids: list[str] = field(default_factory=list)


@dataclass
class SourceReading:
    source: str
    score: float
    weight: float
    count: int


TRACKED_TAGS = [
    TagSource("TRUMP", ["trump", "donald trump"]),
    TagSource("BIDEN", ["biden", "joe biden"]),
    TagSource(
        "CRYPTO",
        ["cryptocurrency", "bitcoin", "ethereum"],
        sources=["coingecko", "alphavantage"],
        crypto_ids=["bitcoin", "ethereum", "cardano", "solana", "polkadot"],
    ),
    TagSource("STOCK_MARKET", ["stock market", "stocks", "S&P 500", "nasdaq"]),
    TagSource("FED", ["federal reserve", "interest rate", "monetary policy"]),
]


def aggregate(readings: list[Optional[SourceReading]]) -> Optional[float]:
    """Weight-averaged score across sources, clamped to [-1, 1]; None if no source answered."""
    valid = [r for r in readings if r is not None]
    if not valid:
        return None
    total_weight = sum(r.weight for r in valid)
    if total_weight <= 0:
        return 0.0
    score = sum(r.score * r.weight for r in valid) / total_weight
    return max(-1.0, min(1.0, score))


def coin_score(coin: dict) -> tuple[float, float]:
    """(score, weight) for one CoinGecko coin: price momentum 70%, community votes 30%."""
    market_data = coin.get("market_data")
    if not isinstance(market_data, dict):
        market_data = {}
    change_24h = market_data.get("price_change_percentage_24h") or 0.0
    change_7d = market_data.get("price_change_percentage_7d") or 0.0
    votes_up = coin.get("sentiment_votes_up_percentage")
    if votes_up is None:
        votes_up = 50.0
    price_sentiment = max(-1.0, min(1.0, (change_24h + change_7d) / 20))
    community_sentiment = (votes_up - 50) / 50
    score = price_sentiment * 0.7 + community_sentiment * 0.3
    market_cap = market_data.get("market_cap")
    market_cap = (market_cap.get("usd") if isinstance(market_cap, dict) else None) or 0.0
    weight = math.log(1 + market_cap / 1_000_000)
    return score, weight


class SentimentFetcher:
    """Polls sentiment sources per tracked tag and appends sentiment snapshots."""

    def __init__(
        self,
        signals: SignalStore,
        alpha_vantage_key: str = "",
        coingecko_key: str = "",
        tags: list[TagSource] = TRACKED_TAGS,
        coin_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.signals = signals
        self.alpha_vantage_key = alpha_vantage_key
        self.coingecko_key = coingecko_key
        self.tags = tags
        # free CoinGecko tier needs a slower pace
        self.coin_delay = coin_delay if coin_delay is not None else (0.5 if coingecko_key else 2.0)
        self._transport = transport

    async def _alpha_vantage(self, client: httpx.AsyncClient, cfg: TagSource) -> Optional[SourceReading]:
        if not self.alpha_vantage_key:
            logger.warning("Alpha Vantage API key not configured")
            return None
        try:
            resp = await client.get(
                ALPHA_VANTAGE_URL,
                params={
                    "function": "NEWS_SENTIMENT",
                    "topics": ",".join(cfg.keywords),
                    "apikey": self.alpha_vantage_key,
                    "limit": 50,
                    "sort": "RELEVANCE",
                },
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Alpha Vantage sentiment error: {e}", extra={"tag": cfg.tag})
            return None

        if not isinstance(data, dict):
            logger.warning("Unexpected Alpha Vantage payload", extra={"tag": cfg.tag})
            return None

        if "Note" in data or "Information" in data:
            logger.warning(
                "Alpha Vantage rate limit or notice",
                extra={"tag": cfg.tag, "detail": data.get("Note") or data.get("Information")},
            )
            return None

        feed = data.get("feed") or []
        if not isinstance(feed, list) or not feed:
            logger.info("No Alpha Vantage data found", extra={"tag": cfg.tag})
            return None

        total_score = 0.0
        total_weight = 0.0
        for article in feed:
            if not isinstance(article, dict):
                continue
            try:
                article_score = float(article.get("overall_sentiment_score") or 0)
                relevance = float(article.get("relevance_score") or 0.5)
            except (TypeError, ValueError):
                continue
            total_score += article_score * relevance
            total_weight += relevance
        score = total_score / total_weight if total_weight > 0 else 0.0
        return SourceReading("alphavantage", score, total_weight, len(feed))

    async def _coingecko(self, client: httpx.AsyncClient, cfg: TagSource) -> Optional[SourceReading]:
        if not cfg.crypto_ids:
            return None
        headers = {"Accept": "application/json"}
        if self.coingecko_key:
            headers["x-cg-demo-api-key"] = self.coingecko_key

        total_score = 0.0
        total_weight = 0.0
        count = 0
        for coin_id in cfg.crypto_ids:
            try:
                resp = await client.get(
                    f"{COINGECKO_BASE}/coins/{coin_id}",
                    headers=headers,
                    params={
                        "localization": "false",
                        "tickers": "false",
                        "community_data": "true",
                        "developer_data": "false",
                        "sparkline": "false",
                    },
                )
                resp.raise_for_status()
                coin = resp.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"Error fetching {coin_id}: {e}")
                continue
            if not isinstance(coin, dict):
                logger.warning("Unexpected CoinGecko payload", extra={"coin": coin_id})
                continue
            try:
                score, weight = coin_score(coin)
            except (TypeError, ValueError) as e:
                logger.warning(f"Unusable CoinGecko data for {coin_id}: {e}")
                continue
            total_score += score * weight
            total_weight += weight
            count += 1
            if self.coin_delay > 0:
                await asyncio.sleep(self.coin_delay)

        if count == 0:
            logger.info("No CoinGecko data found", extra={"tag": cfg.tag})
            return None
        score = total_score / total_weight if total_weight > 0 else 0.0
        return SourceReading("coingecko", score, total_weight, count)

    async def fetch_tag(self, client: httpx.AsyncClient, cfg: TagSource) -> Optional[float]:
        calls = []
        if "alphavantage" in cfg.sources:
            calls.append(self._alpha_vantage(client, cfg))
        if "coingecko" in cfg.sources:
            calls.append(self._coingecko(client, cfg))
        readings = await asyncio.gather(*calls)
        for r in readings:
            if r:
                logger.info(
                    "Sentiment source reading",
                    extra={"tag": cfg.tag, "source": r.source, "score": round(r.score, 4), "count": r.count},
                )
        return aggregate(list(readings))

    async def run(self) -> int:
        """One fetch cycle over all tracked tags. Returns the number of snapshots stored."""
        now = utcnow()
        snapshots: list[SentimentSnapshot] = []
        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            for cfg in self.tags:
                score = await self.fetch_tag(client, cfg)
                if score is None:
                    logger.info("No sentiment data, skipping tag", extra={"tag": cfg.tag})
                    continue
                snapshots.append(SentimentSnapshot(tag=cfg.tag, score=score, timestamp=now))

        stored = await self.signals.append_sentiment_snapshots(snapshots)
        logger.info("Sentiment fetch complete", extra={"stored": stored})
        return stored
