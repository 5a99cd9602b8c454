"""Pydantic models for all data flowing through the engine."""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StrategyStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXECUTED = "EXECUTED"
    EXPIRED = "EXPIRED"


class User(BaseModel):
    """Owner of user-created strategies, keyed by wallet address."""
    id: str
    address: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class StrategyParams(BaseModel):
    """Immutable parameters of a strategy, validated on creation."""
    owner_address: str
    market_id: str = Field(min_length=1)
    sentiment_tag: str = Field(min_length=1)
    min_prediction_prob: float = Field(ge=0.0, le=1.0)
    min_sentiment_score: float = Field(ge=-1.0, le=1.0)
    notional_amount: float = Field(gt=0.0)
    max_slippage_bps: int = Field(ge=0, le=10000)
    expiry_timestamp: datetime


class Strategy(StrategyParams):
    """Persisted strategy record."""
    id: str
    user_id: Optional[str] = None
    status: StrategyStatus = StrategyStatus.ACTIVE
    last_executed_at: Optional[datetime] = None
    last_tx_ref: Optional[str] = None
    external_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_registered(self) -> bool:
        return self.external_id is not None


class MarketSnapshot(BaseModel):
    """Point-in-time market-implied probability."""
    id: Optional[int] = None
    market_id: str
    probability: float = Field(ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=utcnow)


class SentimentSnapshot(BaseModel):
    """Point-in-time sentiment score for a tag."""
    id: Optional[int] = None
    tag: str
    score: float = Field(ge=-1.0, le=1.0)
    timestamp: datetime = Field(default_factory=utcnow)


class ExecutionLog(BaseModel):
    """Audit record of one terminal evaluation attempt."""
    id: Optional[int] = None
    strategy_id: str
    success: bool
    tx_ref: Optional[str] = None
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class RegistrationResult(BaseModel):
    """Outcome of registering a strategy with the settlement backend."""
    success: bool
    external_id: Optional[str] = None
    tx_ref: Optional[str] = None
    reason: Optional[str] = None


class SettlementResult(BaseModel):
    """Outcome of an execute call against the settlement backend."""
    success: bool
    tx_ref: Optional[str] = None
    reason: Optional[str] = None


class Eligibility(BaseModel):
    """Result of the firing rule for one (probability, sentiment) pair."""
    eligible: bool
    probability: float
    sentiment: float
    reason: str = ""


class OutcomeKind(str, Enum):
    EXPIRED = "EXPIRED"
    MISSING_DATA = "MISSING_DATA"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    EXECUTED = "EXECUTED"
    SETTLEMENT_FAILED = "SETTLEMENT_FAILED"
    SKIPPED_NOT_ACTIVE = "SKIPPED_NOT_ACTIVE"
    ERROR = "ERROR"


class EvaluationOutcome(BaseModel):
    """What happened to one strategy during a run."""
    strategy_id: str
    kind: OutcomeKind
    reason: str = ""
    tx_ref: Optional[str] = None
    probability: Optional[float] = None
    sentiment: Optional[float] = None


class RunReport(BaseModel):
    """Summary of a single engine run."""
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    discovered: int = 0
    outcomes: list[EvaluationOutcome] = Field(default_factory=list)

    def count(self, kind: OutcomeKind) -> int:
        return sum(1 for o in self.outcomes if o.kind == kind)


class BacktestPoint(BaseModel):
    timestamp: datetime
    probability: float
    sentiment: float
    would_execute: bool


class BacktestResult(BaseModel):
    """Replay of a strategy's firing rule over historical snapshots."""
    strategy_id: str
    from_timestamp: datetime
    to_timestamp: datetime
    execution_points: list[BacktestPoint] = Field(default_factory=list)
    total_executions: int = 0
