"""Settlement backend clients: the interface and its HTTP implementation."""
import asyncio
import logging
import math
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from shared.errors import SettlementError
from shared.schemas import RegistrationResult, SettlementResult, Strategy
from strategy.bps import prob_to_bps, sentiment_to_bps

logger = logging.getLogger(__name__)


def registration_payload(strategy: Strategy) -> dict:
    """Strategy parameters in the integer encoding the backend stores."""
    return {
        "strategy_id": strategy.id,
        "market_id": strategy.market_id,
        "sentiment_tag": strategy.sentiment_tag,
        "min_prediction_prob_bps": prob_to_bps(strategy.min_prediction_prob),
        "min_sentiment_score_bps": sentiment_to_bps(strategy.min_sentiment_score),
        "notional_amount": int(math.floor(strategy.notional_amount + 0.5)),
        "max_slippage_bps": strategy.max_slippage_bps,
        "expiry_timestamp": int(strategy.expiry_timestamp.timestamp()),
    }


class SettlementClient(ABC):
    """Submits strategy registrations and executions to the settlement backend.

    Implementations report rejections as unsuccessful results rather than
    raising; callers treat any non-success as one terminal failure.
    """

    @abstractmethod
    async def register(self, strategy: Strategy) -> RegistrationResult:
        raise NotImplementedError

    @abstractmethod
    async def execute(
        self,
        strategy_id: str,
        market_id: str,
        prob_bps: int,
        sentiment_bps: int,
        idempotency_key: Optional[str] = None,
    ) -> SettlementResult:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class HttpSettlementClient(SettlementClient):
    """Talks to the settlement service over HTTP.

    A 429 response is retried once after ``rate_limit_retry_seconds``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        rate_limit_retry_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.rate_limit_retry_seconds = rate_limit_retry_seconds
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _post(self, path: str, payload: dict, idempotency_key: Optional[str] = None) -> dict:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        resp = await self._client.post(path, json=payload, headers=headers)
        if resp.status_code == 429:
            logger.warning(
                "Settlement rate limit hit, retrying once",
                extra={"path": path, "pause_seconds": self.rate_limit_retry_seconds},
            )
            await asyncio.sleep(self.rate_limit_retry_seconds)
            resp = await self._client.post(path, json=payload, headers=headers)
        if resp.status_code >= 400:
            raise SettlementError(f"HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise SettlementError(f"Unparseable settlement response: {e}") from e
        if not isinstance(data, dict):
            raise SettlementError("Settlement response is not an object")
        return data

    async def register(self, strategy: Strategy) -> RegistrationResult:
        payload = registration_payload(strategy)
        logger.info("Registering strategy", extra={"strategy_id": strategy.id})
        try:
            data = await self._post("/strategies/register", payload)
        except (httpx.HTTPError, SettlementError) as e:
            return RegistrationResult(success=False, reason=f"On-chain registration failed: {e}")
        if data.get("success") is False:
            return RegistrationResult(success=False, reason=data.get("reason") or "rejected")
        return RegistrationResult(
            success=True,
            external_id=str(data.get("external_id") or strategy.id),
            tx_ref=data.get("tx_ref"),
        )

    async def execute(
        self,
        strategy_id: str,
        market_id: str,
        prob_bps: int,
        sentiment_bps: int,
        idempotency_key: Optional[str] = None,
    ) -> SettlementResult:
        payload = {
            "strategy_id": strategy_id,
            "market_id": market_id,
            "prob_bps": prob_bps,
            "sentiment_bps": sentiment_bps,
        }
        logger.info("Executing strategy", extra={"strategy_id": strategy_id})
        try:
            data = await self._post("/strategies/execute", payload, idempotency_key)
        except (httpx.HTTPError, SettlementError) as e:
            return SettlementResult(success=False, reason=str(e) or e.__class__.__name__)
        if data.get("success") is False:
            return SettlementResult(success=False, reason=data.get("reason") or "rejected")
        tx_ref = data.get("tx_ref")
        if not tx_ref:
            return SettlementResult(success=False, reason="Settlement response missing tx_ref")
        return SettlementResult(success=True, tx_ref=tx_ref)

    async def close(self) -> None:
        await self._client.aclose()
