"""FastAPI service for creating, inspecting, executing and backtesting strategies."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from execution.settlement_client import SettlementClient
from shared.errors import (
    InvalidStrategy,
    MissingSignalData,
    SentimentFlowError,
    StrategyNotActive,
    StrategyNotFound,
)
from shared.schemas import StrategyParams, StrategyStatus, utcnow
from storage.db import Database
from storage.signal_store import SignalStore
from storage.strategy_repository import StrategyRepository
from strategy.backtest import BacktestSimulator
from strategy.engine import ExecutionEngine
from strategy.registration import register_strategy

app = FastAPI(title="SentimentFlow")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class Services:
    db: Database
    signals: SignalStore
    strategies: StrategyRepository
    settlement: SettlementClient
    engine: ExecutionEngine
    simulator: BacktestSimulator


class ExecuteRequest(BaseModel):
    strategy_id: str


class SimulateRequest(BaseModel):
    strategy_id: str
    from_timestamp: Optional[datetime] = None
    to_timestamp: Optional[datetime] = None


def set_services(services: Services):
    app.state.services = services


def _get_services() -> Services:
    services = getattr(app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized")
    return services


_STATUS_CODES = {
    StrategyNotFound: 404,
    StrategyNotActive: 400,
    MissingSignalData: 400,
    InvalidStrategy: 400,
}


@app.exception_handler(SentimentFlowError)
async def domain_error_handler(request: Request, exc: SentimentFlowError):
    status_code = _STATUS_CODES.get(type(exc), 500)
    return JSONResponse(status_code=status_code, content={"success": False, "error": str(exc)})


@app.get("/api/status")
async def api_status():
    svc = _get_services()
    counts = {}
    for status in StrategyStatus:
        counts[status.value] = len(await svc.strategies.list_by_status(status))
    return {"status": "running", "engine_running": svc.engine.running, "strategies": counts}


@app.get("/api/strategies")
async def list_strategies(status: Optional[StrategyStatus] = None):
    svc = _get_services()
    strategies = await svc.strategies.list_by_status(status)
    return {"success": True, "strategies": [s.model_dump(mode="json") for s in strategies]}


@app.get("/api/strategies/{strategy_id}")
async def get_strategy(strategy_id: str):
    svc = _get_services()
    strategy = await svc.strategies.get(strategy_id)
    if strategy is None:
        raise StrategyNotFound(strategy_id)
    logs = await svc.strategies.list_logs(strategy_id, limit=10)
    return {
        "success": True,
        "strategy": {
            **strategy.model_dump(mode="json"),
            "execution_logs": [log.model_dump(mode="json") for log in logs],
        },
    }


@app.post("/api/strategies", status_code=201)
async def create_strategy(params: StrategyParams):
    svc = _get_services()
    expiry = params.expiry_timestamp
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    if expiry <= utcnow():
        raise InvalidStrategy("expiry_timestamp must be in the future")

    user = await svc.db.get_or_create_user(params.owner_address)
    strategy = await svc.strategies.create(params, user_id=user.id)
    registration = await register_strategy(strategy, svc.settlement, svc.strategies)
    return {
        "success": True,
        "strategy": {
            **strategy.model_dump(mode="json"),
            "tx_ref": registration.tx_ref,
            "registration_error": None if registration.success else registration.reason,
        },
    }


@app.post("/api/execute")
async def execute_strategy(body: ExecuteRequest):
    svc = _get_services()
    outcome = await svc.engine.execute_now(body.strategy_id)
    return {"success": True, "result": outcome.model_dump(mode="json")}


@app.post("/api/simulate")
async def simulate_strategy(body: SimulateRequest):
    svc = _get_services()
    strategy = await svc.strategies.get(body.strategy_id)
    if strategy is None:
        raise StrategyNotFound(body.strategy_id)
    if body.from_timestamp and body.to_timestamp and body.from_timestamp > body.to_timestamp:
        raise InvalidStrategy("from_timestamp must not be after to_timestamp")
    result = await svc.simulator.simulate(strategy, body.from_timestamp, body.to_timestamp)
    return {"success": True, "result": result.model_dump(mode="json")}


@app.get("/api/markets")
async def api_markets(
    market_id: Optional[str] = None,
    limit: int = Query(100, gt=0, le=1000),
    offset: int = Query(0, ge=0),
):
    svc = _get_services()
    data = await svc.signals.latest_market_snapshots(market_id, limit=limit, offset=offset)
    return {"success": True, "data": [s.model_dump(mode="json") for s in data]}


@app.get("/api/sentiment")
async def api_sentiment(tag: Optional[str] = None):
    """Latest snapshot per tag, or for one tag."""
    svc = _get_services()
    if tag:
        snap = await svc.signals.latest_sentiment_snapshot(tag)
        data = [snap] if snap else []
    else:
        data = await svc.signals.latest_sentiment_snapshots_since(EPOCH)
    return {"success": True, "data": [s.model_dump(mode="json") for s in data]}


@app.get("/api/sentiment/{tag}")
async def api_sentiment_timeline(
    tag: str,
    from_timestamp: Optional[datetime] = Query(None, alias="from"),
    to_timestamp: Optional[datetime] = Query(None, alias="to"),
    limit: int = Query(100, gt=0, le=1000),
):
    """Sentiment history for one tag, newest first."""
    svc = _get_services()
    if from_timestamp and to_timestamp and from_timestamp > to_timestamp:
        raise InvalidStrategy("from must not be after to")
    data = await svc.signals.sentiment_timeline(tag, from_timestamp, to_timestamp, limit)
    return {"success": True, "data": [s.model_dump(mode="json") for s in data]}
