"""Paper settlement: simulate the backend without moving funds."""
import logging
import uuid
from typing import Optional

from execution.settlement_client import SettlementClient, registration_payload
from shared.schemas import RegistrationResult, SettlementResult, Strategy

logger = logging.getLogger(__name__)


class PaperSettlementClient(SettlementClient):
    """In-memory stand-in for the settlement backend.

    Mirrors the backend contract: executing an unregistered strategy fails,
    and a repeated idempotency key replays the original transaction.
    """

    def __init__(self):
        self.registered: dict[str, dict] = {}
        self.executions: list[dict] = []
        self._by_key: dict[str, str] = {}

    async def register(self, strategy: Strategy) -> RegistrationResult:
        payload = registration_payload(strategy)
        tx_ref = f"paper-{uuid.uuid4().hex[:12]}"
        self.registered[strategy.id] = payload
        logger.info(
            "Paper strategy registered",
            extra={"strategy_id": strategy.id, "tx_ref": tx_ref},
        )
        return RegistrationResult(success=True, external_id=strategy.id, tx_ref=tx_ref)

    async def execute(
        self,
        strategy_id: str,
        market_id: str,
        prob_bps: int,
        sentiment_bps: int,
        idempotency_key: Optional[str] = None,
    ) -> SettlementResult:
        if strategy_id not in self.registered:
            return SettlementResult(success=False, reason="E_STRATEGY_NOT_REGISTERED")
        if idempotency_key and idempotency_key in self._by_key:
            return SettlementResult(success=True, tx_ref=self._by_key[idempotency_key])

        tx_ref = f"paper-{uuid.uuid4().hex[:12]}"
        self.executions.append({
            "strategy_id": strategy_id,
            "market_id": market_id,
            "prob_bps": prob_bps,
            "sentiment_bps": sentiment_bps,
            "tx_ref": tx_ref,
        })
        if idempotency_key:
            self._by_key[idempotency_key] = tx_ref
        logger.info(
            "Paper strategy executed",
            extra={
                "strategy_id": strategy_id,
                "prob_bps": prob_bps,
                "sentiment_bps": sentiment_bps,
                "tx_ref": tx_ref,
            },
        )
        return SettlementResult(success=True, tx_ref=tx_ref)
