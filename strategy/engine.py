"""Evaluation & execution engine: one sweep over all ACTIVE strategies per run."""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from execution.idempotency import build_idempotency_key
from execution.settlement_client import SettlementClient
from shared.errors import MissingSignalData, StrategyNotActive, StrategyNotFound
from shared.schemas import (
    EvaluationOutcome,
    OutcomeKind,
    RunReport,
    Strategy,
    StrategyStatus,
    utcnow,
)
from storage.signal_store import SignalStore
from storage.strategy_repository import StrategyRepository
from strategy.bps import prob_to_bps, sentiment_to_bps
from strategy.discovery import DiscoveryMatcher
from strategy.firing_rule import can_transition, evaluate_eligibility, is_expired
from strategy.thresholds import INTER_STRATEGY_DELAY_SECONDS

logger = logging.getLogger(__name__)


class ExecutionEngine:
    """Runs discovery, then expires or evaluates each ACTIVE strategy in turn.

    Strategies are processed sequentially to bound load on the settlement
    backend. A failure while handling one strategy is logged (and recorded in
    its execution log) but never stops the sweep. Only one run may be in
    flight at a time.
    """

    def __init__(
        self,
        signals: SignalStore,
        strategies: StrategyRepository,
        settlement: SettlementClient,
        discovery: Optional[DiscoveryMatcher] = None,
        inter_strategy_delay: float = INTER_STRATEGY_DELAY_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.signals = signals
        self.strategies = strategies
        self.settlement = settlement
        self.discovery = discovery
        self.inter_strategy_delay = inter_strategy_delay
        self.clock = clock
        self._run_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    async def run_once(self) -> Optional[RunReport]:
        """Execute one full run. Returns None if a run is already in progress."""
        if self._run_lock.locked():
            logger.warning("Engine run already in progress, skipping")
            return None

        async with self._run_lock:
            report = RunReport(started_at=self.clock())
            logger.info("Running strategy execution engine")

            if self.discovery is not None:
                try:
                    created = await self.discovery.discover()
                    report.discovered = len(created)
                except Exception as e:
                    logger.exception(f"Strategy discovery failed: {e}")

            active = await self.strategies.list_by_status(StrategyStatus.ACTIVE)
            logger.info("Found active strategies", extra={"count": len(active)})

            for i, strategy in enumerate(active):
                outcome = await self.process(strategy)
                report.outcomes.append(outcome)
                if (
                    outcome.kind != OutcomeKind.EXPIRED
                    and self.inter_strategy_delay > 0
                    and i < len(active) - 1
                ):
                    await asyncio.sleep(self.inter_strategy_delay)

            report.finished_at = self.clock()
            logger.info(
                "Strategy execution engine completed",
                extra={
                    "discovered": report.discovered,
                    "executed": report.count(OutcomeKind.EXECUTED),
                    "expired": report.count(OutcomeKind.EXPIRED),
                    "failed": report.count(OutcomeKind.SETTLEMENT_FAILED),
                    "errors": report.count(OutcomeKind.ERROR),
                },
            )
            return report

    async def process(self, strategy: Strategy) -> EvaluationOutcome:
        """Expire or evaluate a single strategy, recording unexpected errors."""
        try:
            if is_expired(strategy, self.clock()):
                return await self._expire(strategy)
            return await self._evaluate(strategy)
        except Exception as e:
            return await self._record_error(strategy.id, e)

    async def execute_now(self, strategy_id: str) -> EvaluationOutcome:
        """Fire a strategy immediately against the latest signals, skipping the thresholds.

        Raises StrategyNotFound, StrategyNotActive or MissingSignalData when the
        strategy cannot be fired at all.
        """
        strategy = await self.strategies.get(strategy_id)
        if strategy is None:
            raise StrategyNotFound(strategy_id)
        if not can_transition(strategy.status, StrategyStatus.EXECUTED):
            raise StrategyNotActive(strategy_id, strategy.status.value)
        if is_expired(strategy, self.clock()):
            await self._expire(strategy)
            raise StrategyNotActive(strategy_id, StrategyStatus.EXPIRED.value)

        market = await self.signals.latest_market_snapshot(strategy.market_id)
        sentiment = await self.signals.latest_sentiment_snapshot(strategy.sentiment_tag)
        if market is None or sentiment is None:
            raise MissingSignalData("Missing market or sentiment data")

        try:
            return await self._settle(strategy, market.probability, sentiment.score)
        except Exception as e:
            return await self._record_error(strategy.id, e)

    async def _expire(self, strategy: Strategy) -> EvaluationOutcome:
        if await self.strategies.mark_expired(strategy.id):
            logger.info("Strategy has expired", extra={"strategy_id": strategy.id})
            return EvaluationOutcome(strategy_id=strategy.id, kind=OutcomeKind.EXPIRED)
        return EvaluationOutcome(
            strategy_id=strategy.id,
            kind=OutcomeKind.SKIPPED_NOT_ACTIVE,
            reason="Strategy no longer ACTIVE",
        )

    async def _evaluate(self, strategy: Strategy) -> EvaluationOutcome:
        market = await self.signals.latest_market_snapshot(strategy.market_id)
        sentiment = await self.signals.latest_sentiment_snapshot(strategy.sentiment_tag)

        if market is None or sentiment is None:
            logger.info(
                "Skipping strategy: missing data",
                extra={
                    "strategy_id": strategy.id,
                    "has_market": market is not None,
                    "has_sentiment": sentiment is not None,
                },
            )
            return EvaluationOutcome(
                strategy_id=strategy.id,
                kind=OutcomeKind.MISSING_DATA,
                reason="Missing data",
            )

        eligibility = evaluate_eligibility(strategy, market.probability, sentiment.score)
        if not eligibility.eligible:
            logger.info(
                "Skipping strategy",
                extra={"strategy_id": strategy.id, "reason": eligibility.reason},
            )
            return EvaluationOutcome(
                strategy_id=strategy.id,
                kind=OutcomeKind.NOT_ELIGIBLE,
                reason=eligibility.reason,
                probability=market.probability,
                sentiment=sentiment.score,
            )

        return await self._settle(strategy, market.probability, sentiment.score)

    async def _settle(self, strategy: Strategy, probability: float, sentiment: float) -> EvaluationOutcome:
        current = await self.strategies.get(strategy.id)
        if current is None or not can_transition(current.status, StrategyStatus.EXECUTED):
            return EvaluationOutcome(
                strategy_id=strategy.id,
                kind=OutcomeKind.SKIPPED_NOT_ACTIVE,
                reason="Strategy no longer ACTIVE",
            )

        logger.info(
            "Executing strategy",
            extra={"strategy_id": strategy.id, "probability": probability, "sentiment": sentiment},
        )
        # key changes only once a failed attempt has been logged
        attempt = await self.strategies.count_logs(strategy.id)
        result = await self.settlement.execute(
            strategy_id=strategy.id,
            market_id=strategy.market_id,
            prob_bps=prob_to_bps(probability),
            sentiment_bps=sentiment_to_bps(sentiment),
            idempotency_key=build_idempotency_key(strategy.id, "execute", suffix=f"attempt-{attempt}"),
        )

        if not result.success:
            reason = result.reason or "Settlement failed"
            await self.strategies.append_log(strategy.id, success=False, tx_ref=result.tx_ref, reason=reason)
            logger.warning(
                "Strategy settlement failed",
                extra={"strategy_id": strategy.id, "reason": reason},
            )
            return EvaluationOutcome(
                strategy_id=strategy.id,
                kind=OutcomeKind.SETTLEMENT_FAILED,
                reason=reason,
                probability=probability,
                sentiment=sentiment,
            )

        applied = await self.strategies.mark_executed(strategy.id, result.tx_ref, self.clock())
        if not applied:
            reason = "Strategy no longer ACTIVE; settlement result not applied"
            await self.strategies.append_log(strategy.id, success=False, tx_ref=result.tx_ref, reason=reason)
            logger.warning(
                "Concurrent status change detected",
                extra={"strategy_id": strategy.id, "tx_ref": result.tx_ref},
            )
            return EvaluationOutcome(
                strategy_id=strategy.id,
                kind=OutcomeKind.SKIPPED_NOT_ACTIVE,
                reason=reason,
                tx_ref=result.tx_ref,
            )

        logger.info(
            "Strategy executed successfully",
            extra={"strategy_id": strategy.id, "tx_ref": result.tx_ref},
        )
        return EvaluationOutcome(
            strategy_id=strategy.id,
            kind=OutcomeKind.EXECUTED,
            tx_ref=result.tx_ref,
            probability=probability,
            sentiment=sentiment,
        )

    async def _record_error(self, strategy_id: str, error: Exception) -> EvaluationOutcome:
        reason = f"Execution error: {error}"
        logger.exception(f"Error executing strategy {strategy_id}: {error}")
        try:
            await self.strategies.append_log(strategy_id, success=False, reason=reason)
        except Exception as log_exc:
            logger.error(f"Failed to append execution log for {strategy_id}: {log_exc}")
        return EvaluationOutcome(strategy_id=strategy_id, kind=OutcomeKind.ERROR, reason=reason)
