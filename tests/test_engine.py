"""Tests for strategy.engine."""
import asyncio
from datetime import timedelta

import pytest

from execution.paper_settlement import PaperSettlementClient
from helpers import NOW, fixed_clock, make_params, market, sentiment
from shared.errors import MissingSignalData, StrategyNotActive, StrategyNotFound
from shared.schemas import OutcomeKind, SettlementResult, StrategyStatus
from strategy.discovery import DiscoveryMatcher
from strategy.engine import ExecutionEngine


def _engine(signals, strategies, settlement, **kwargs):
    return ExecutionEngine(
        signals, strategies, settlement, inter_strategy_delay=0, clock=fixed_clock(), **kwargs
    )


async def _registered(strategies, settlement, **overrides):
    s = await strategies.create(make_params(**overrides))
    await settlement.register(s)
    await strategies.set_external_id(s.id, s.id)
    return s


async def _seed(signals, probability=0.6, score=0.1, market_id="CRYPTO_BTC", tag="CRYPTO"):
    await signals.append_market_snapshots([market(market_id, probability, minutes=-1)])
    await signals.append_sentiment_snapshots([sentiment(tag, score, minutes=-1)])


class RecordingSignals:
    """Signal store wrapper that counts lookups."""

    def __init__(self, inner):
        self.inner = inner
        self.lookups = 0

    async def latest_market_snapshot(self, market_id):
        self.lookups += 1
        return await self.inner.latest_market_snapshot(market_id)

    async def latest_sentiment_snapshot(self, tag):
        self.lookups += 1
        return await self.inner.latest_sentiment_snapshot(tag)


class FlakySettlement(PaperSettlementClient):
    """Paper settlement whose execute fails a fixed number of times first."""

    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    async def execute(self, strategy_id, market_id, prob_bps, sentiment_bps, idempotency_key=None):
        if self.failures > 0:
            self.failures -= 1
            return SettlementResult(success=False, reason="E_SLIPPAGE")
        return await super().execute(strategy_id, market_id, prob_bps, sentiment_bps, idempotency_key)


class ExplodingSettlement(PaperSettlementClient):
    """Paper settlement that raises for one strategy id."""

    def __init__(self, bad_id=None):
        super().__init__()
        self.bad_id = bad_id

    async def execute(self, strategy_id, market_id, prob_bps, sentiment_bps, idempotency_key=None):
        if strategy_id == self.bad_id:
            raise RuntimeError("boom")
        return await super().execute(strategy_id, market_id, prob_bps, sentiment_bps, idempotency_key)


class BlockingSettlement(PaperSettlementClient):
    """Paper settlement whose execute waits until released."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def execute(self, *args, **kwargs):
        self.entered.set()
        await self.release.wait()
        return await super().execute(*args, **kwargs)


@pytest.mark.asyncio
async def test_executes_when_thresholds_met(signals, strategies, paper):
    s = await _registered(strategies, paper)
    await _seed(signals, probability=0.6, score=0.1)

    report = await _engine(signals, strategies, paper).run_once()

    [outcome] = report.outcomes
    assert outcome.kind == OutcomeKind.EXECUTED
    stored = await strategies.get(s.id)
    assert stored.status == StrategyStatus.EXECUTED
    assert stored.last_tx_ref == outcome.tx_ref
    assert stored.last_executed_at == NOW
    assert paper.executions[0]["prob_bps"] == 6000
    assert paper.executions[0]["sentiment_bps"] == 5500

    [log] = await strategies.list_logs(s.id)
    assert log.success is True
    assert log.tx_ref == outcome.tx_ref


@pytest.mark.asyncio
async def test_not_eligible_writes_nothing(signals, strategies, paper):
    s = await _registered(strategies, paper)
    await _seed(signals, probability=0.4, score=0.9)

    report = await _engine(signals, strategies, paper).run_once()

    assert report.outcomes[0].kind == OutcomeKind.NOT_ELIGIBLE
    assert (await strategies.get(s.id)).status == StrategyStatus.ACTIVE
    assert await strategies.list_logs(s.id) == []
    assert paper.executions == []


@pytest.mark.asyncio
async def test_missing_data_skips_without_log(signals, strategies, paper):
    s = await _registered(strategies, paper)
    await signals.append_market_snapshots([market("CRYPTO_BTC", 0.9)])

    report = await _engine(signals, strategies, paper).run_once()

    assert report.outcomes[0].kind == OutcomeKind.MISSING_DATA
    assert (await strategies.get(s.id)).status == StrategyStatus.ACTIVE
    assert await strategies.list_logs(s.id) == []


@pytest.mark.asyncio
async def test_expired_strategy_is_marked_without_signal_lookup(signals, strategies, paper):
    s = await _registered(strategies, paper, expiry_timestamp=NOW - timedelta(minutes=1))
    await _seed(signals, probability=0.9, score=0.9)
    recording = RecordingSignals(signals)

    report = await _engine(recording, strategies, paper).run_once()

    assert report.outcomes[0].kind == OutcomeKind.EXPIRED
    assert recording.lookups == 0
    assert (await strategies.get(s.id)).status == StrategyStatus.EXPIRED
    assert await strategies.list_logs(s.id) == []
    assert paper.executions == []


@pytest.mark.asyncio
async def test_settlement_failure_keeps_active_and_retries(signals, strategies):
    settlement = FlakySettlement(failures=1)
    s = await _registered(strategies, settlement)
    await _seed(signals)
    engine = _engine(signals, strategies, settlement)

    first = await engine.run_once()
    assert first.outcomes[0].kind == OutcomeKind.SETTLEMENT_FAILED
    assert first.outcomes[0].reason == "E_SLIPPAGE"
    assert (await strategies.get(s.id)).status == StrategyStatus.ACTIVE
    [log] = await strategies.list_logs(s.id)
    assert log.success is False
    assert log.reason == "E_SLIPPAGE"

    second = await engine.run_once()
    assert second.outcomes[0].kind == OutcomeKind.EXECUTED
    assert (await strategies.get(s.id)).status == StrategyStatus.EXECUTED
    assert len(await strategies.list_logs(s.id)) == 2


@pytest.mark.asyncio
async def test_executed_strategy_is_never_evaluated_again(signals, strategies, paper):
    await _registered(strategies, paper)
    await _seed(signals)
    engine = _engine(signals, strategies, paper)

    await engine.run_once()
    report = await engine.run_once()

    assert report.outcomes == []
    assert len(paper.executions) == 1


@pytest.mark.asyncio
async def test_unregistered_strategy_fails_cleanly(signals, strategies, paper):
    s = await strategies.create(make_params())
    await _seed(signals)

    report = await _engine(signals, strategies, paper).run_once()

    assert report.outcomes[0].kind == OutcomeKind.SETTLEMENT_FAILED
    assert (await strategies.get(s.id)).status == StrategyStatus.ACTIVE
    [log] = await strategies.list_logs(s.id)
    assert log.reason == "E_STRATEGY_NOT_REGISTERED"


@pytest.mark.asyncio
async def test_error_in_one_strategy_does_not_stop_run(signals, strategies):
    settlement = ExplodingSettlement()
    bad = await _registered(strategies, settlement)
    good = await _registered(strategies, settlement)
    settlement.bad_id = bad.id
    await _seed(signals)

    report = await _engine(signals, strategies, settlement).run_once()

    kinds = {o.strategy_id: o.kind for o in report.outcomes}
    assert kinds == {bad.id: OutcomeKind.ERROR, good.id: OutcomeKind.EXECUTED}
    assert (await strategies.get(bad.id)).status == StrategyStatus.ACTIVE
    [log] = await strategies.list_logs(bad.id)
    assert log.success is False
    assert log.reason == "Execution error: boom"


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped(signals, strategies):
    settlement = BlockingSettlement()
    await _registered(strategies, settlement)
    await _seed(signals)
    engine = _engine(signals, strategies, settlement)

    first = asyncio.create_task(engine.run_once())
    await settlement.entered.wait()
    assert engine.running is True
    assert await engine.run_once() is None

    settlement.release.set()
    report = await first
    assert report.outcomes[0].kind == OutcomeKind.EXECUTED
    assert engine.running is False


@pytest.mark.asyncio
async def test_run_includes_discovery(signals, strategies, paper):
    await _seed(signals, probability=0.6, score=0.4)
    discovery = DiscoveryMatcher(
        signals, strategies, paper, registration_delay=0, clock=fixed_clock()
    )

    report = await _engine(signals, strategies, paper, discovery=discovery).run_once()

    assert report.discovered == 1
    assert report.count(OutcomeKind.EXECUTED) == 1


@pytest.mark.asyncio
async def test_discovery_failure_does_not_block_evaluation(signals, strategies, paper):
    class BrokenDiscovery:
        async def discover(self):
            raise RuntimeError("feed offline")

    await _registered(strategies, paper)
    await _seed(signals)

    report = await _engine(signals, strategies, paper, discovery=BrokenDiscovery()).run_once()

    assert report.discovered == 0
    assert report.count(OutcomeKind.EXECUTED) == 1


@pytest.mark.asyncio
async def test_execute_now_skips_thresholds(signals, strategies, paper):
    s = await _registered(strategies, paper, min_prediction_prob=0.9)
    await _seed(signals, probability=0.2, score=-0.5)

    outcome = await _engine(signals, strategies, paper).execute_now(s.id)

    assert outcome.kind == OutcomeKind.EXECUTED
    assert (await strategies.get(s.id)).status == StrategyStatus.EXECUTED


@pytest.mark.asyncio
async def test_execute_now_errors(signals, strategies, paper):
    engine = _engine(signals, strategies, paper)

    with pytest.raises(StrategyNotFound):
        await engine.execute_now("missing")

    s = await _registered(strategies, paper)
    with pytest.raises(MissingSignalData):
        await engine.execute_now(s.id)

    await _seed(signals)
    await engine.execute_now(s.id)
    with pytest.raises(StrategyNotActive, match="EXECUTED"):
        await engine.execute_now(s.id)


@pytest.mark.asyncio
async def test_execute_now_expires_stale_strategy(signals, strategies, paper):
    s = await _registered(strategies, paper, expiry_timestamp=NOW - timedelta(seconds=1))
    await _seed(signals)

    with pytest.raises(StrategyNotActive, match="EXPIRED"):
        await _engine(signals, strategies, paper).execute_now(s.id)
    assert (await strategies.get(s.id)).status == StrategyStatus.EXPIRED


@pytest.mark.asyncio
async def test_concurrent_execution_does_not_overwrite(signals, strategies):
    class RacingSettlement(PaperSettlementClient):
        """Another worker marks the strategy executed while this call is in flight."""

        async def execute(self, strategy_id, *args, **kwargs):
            await strategies.mark_executed(strategy_id, "tx-other")
            return await super().execute(strategy_id, *args, **kwargs)

    settlement = RacingSettlement()
    s = await _registered(strategies, settlement)
    await _seed(signals)

    report = await _engine(signals, strategies, settlement).run_once()

    assert report.outcomes[0].kind == OutcomeKind.SKIPPED_NOT_ACTIVE
    stored = await strategies.get(s.id)
    assert stored.status == StrategyStatus.EXECUTED
    assert stored.last_tx_ref == "tx-other"
    logs = await strategies.list_logs(s.id)
    assert [log.success for log in logs].count(True) == 1


@pytest.mark.asyncio
async def test_retry_after_failure_uses_fresh_idempotency_key(signals, strategies):
    class ReplayingSettlement(FlakySettlement):
        """Stores every response by key and replays it, failures included."""

        def __init__(self):
            super().__init__(failures=1)
            self.keys = []
            self.responses = {}

        async def execute(self, strategy_id, market_id, prob_bps, sentiment_bps, idempotency_key=None):
            self.keys.append(idempotency_key)
            if idempotency_key in self.responses:
                return self.responses[idempotency_key]
            result = await super().execute(strategy_id, market_id, prob_bps, sentiment_bps, idempotency_key)
            self.responses[idempotency_key] = result
            return result

    settlement = ReplayingSettlement()
    s = await _registered(strategies, settlement)
    await _seed(signals)
    engine = _engine(signals, strategies, settlement)

    assert (await engine.run_once()).outcomes[0].kind == OutcomeKind.SETTLEMENT_FAILED
    assert (await engine.run_once()).outcomes[0].kind == OutcomeKind.EXECUTED
    assert len(set(settlement.keys)) == 2
    assert (await strategies.get(s.id)).status == StrategyStatus.EXECUTED
