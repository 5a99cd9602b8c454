"""Market probability ingestion via the Polymarket Gamma API."""
import json
import logging
from datetime import datetime
from typing import Optional

import httpx

from shared.schemas import MarketSnapshot, utcnow
from storage.signal_store import SignalStore

logger = logging.getLogger(__name__)

GAMMA_BASE = "https://gamma-api.polymarket.com"

# Internal market id -> keywords that must ALL appear in the market question.
# The internal id is what strategies reference, not Polymarket's own id.
MARKET_KEYWORD_MAP: dict[str, list[str]] = {
    "TRUMP_CABINET": ["Trump", "Cabinet"],
    "TRUMP_NOMINEE": ["Trump", "Nominate"],
    "ELECTION_2028": ["2028", "presidential"],
    "FED_RATES": ["Fed", "Rate", "Cut"],
    "ECON_RECESSION": ["Recession"],
    "FINANCE_NVIDIA": ["Nvidia", "Stock"],
    "CRYPTO_BTC": ["Bitcoin"],
    "CRYPTO_ETH": ["Ethereum"],
    "CRYPTO_SOL": ["Solana"],
    "CRYPTO_XRP": ["XRP"],
    "CRYPTO_DOGE": ["Dogecoin"],
    "CRYPTO_ETF": ["ETF", "Approval"],
    "SPORTS_NFL": ["NFL", "Winner"],
    "SPORTS_NBA": ["NBA", "Winner"],
    "SPORTS_SOCCER_EPL": ["Premier League", "Winner"],
    "POLITICS_MIDTERMS": ["Midterm", "Elections"],
    "POLITICS_IMPEACH": ["Impeachment"],
}


def _parse_probability(outcome_prices) -> Optional[float]:
    """First outcome price ("Yes") as a probability, or None if unusable."""
    prices = outcome_prices
    if isinstance(prices, str):
        try:
            prices = json.loads(prices)
        except (json.JSONDecodeError, TypeError):
            return None
    if not prices:
        return None
    try:
        probability = float(prices[0])
    except (TypeError, ValueError):
        return None
    if not 0.0 <= probability <= 1.0:
        return None
    return probability


def match_markets(
    markets: list[dict],
    keyword_map: dict[str, list[str]] = MARKET_KEYWORD_MAP,
    now: Optional[datetime] = None,
) -> list[MarketSnapshot]:
    """Build one snapshot per internal id whose keywords all match a market question."""
    now = now or utcnow()
    snapshots: list[MarketSnapshot] = []
    for internal_id, keywords in keyword_map.items():
        lowered = [k.lower() for k in keywords]
        market = next(
            (m for m in markets if all(k in (m.get("question") or "").lower() for k in lowered)),
            None,
        )
        if market is None:
            continue
        probability = _parse_probability(market.get("outcomePrices"))
        if probability is None:
            logger.warning(
                "Failed to parse prices for market",
                extra={"market": market.get("id"), "internal_id": internal_id},
            )
            continue
        snapshots.append(MarketSnapshot(market_id=internal_id, probability=probability, timestamp=now))
        logger.debug(
            "Matched market",
            extra={
                "internal_id": internal_id,
                "question": (market.get("question") or "")[:80],
                "probability": probability,
            },
        )
    return snapshots


class PolymarketFetcher:
    """Polls active Polymarket markets and appends market snapshots."""

    def __init__(
        self,
        signals: SignalStore,
        keyword_map: dict[str, list[str]] = MARKET_KEYWORD_MAP,
        limit: int = 1000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.signals = signals
        self.keyword_map = keyword_map
        self.limit = limit
        self._transport = transport

    async def fetch_markets(self) -> list[dict]:
        """Fetch active markets ordered by volume; [] on any API error."""
        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            try:
                resp = await client.get(
                    f"{GAMMA_BASE}/markets",
                    params={
                        "active": "true",
                        "closed": "false",
                        "limit": self.limit,
                        "order": "volume",
                        "ascending": "false",
                    },
                )
                resp.raise_for_status()
                data = resp.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"Gamma API error: {e}")
                return []

        if isinstance(data, dict):
            data = data.get("data") or []
        if not isinstance(data, list):
            return []
        return [m for m in data if isinstance(m, dict)]

    async def run(self) -> int:
        """One fetch cycle. Returns the number of snapshots stored."""
        markets = await self.fetch_markets()
        if not markets:
            logger.info("No markets returned from API")
            return 0
        snapshots = match_markets(markets, self.keyword_map)
        stored = await self.signals.append_market_snapshots(snapshots)
        logger.info(
            "Polymarket fetch complete",
            extra={"fetched": len(markets), "stored": stored},
        )
        return stored
