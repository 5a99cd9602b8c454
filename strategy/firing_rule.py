"""Firing rule and lifecycle transitions shared by the engine and the backtest."""
from datetime import datetime, timezone

from shared.schemas import Eligibility, Strategy, StrategyStatus

# Allowed status transitions; anything not listed is rejected.
TRANSITIONS: dict[StrategyStatus, frozenset[StrategyStatus]] = {
    StrategyStatus.ACTIVE: frozenset({StrategyStatus.EXECUTED, StrategyStatus.EXPIRED}),
    StrategyStatus.EXECUTED: frozenset(),
    StrategyStatus.EXPIRED: frozenset(),
}


def can_transition(current: StrategyStatus, target: StrategyStatus) -> bool:
    return target in TRANSITIONS[current]


def sources_for(target: StrategyStatus) -> list[StrategyStatus]:
    """Statuses from which ``target`` may be entered."""
    return [s for s in StrategyStatus if can_transition(s, target)]


def is_expired(strategy: Strategy, now: datetime) -> bool:
    """True once ``now`` is strictly past the expiry; naive datetimes count as UTC."""
    expiry = strategy.expiry_timestamp
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now > expiry


def evaluate_eligibility(strategy: Strategy, probability: float, sentiment: float) -> Eligibility:
    """Both signals must meet or exceed the strategy's thresholds."""
    meets_prob = probability >= strategy.min_prediction_prob
    meets_sent = sentiment >= strategy.min_sentiment_score
    eligible = meets_prob and meets_sent
    if eligible:
        reason = "All thresholds met"
    else:
        reason = (
            f"Thresholds not met: "
            f"prob {probability:.4f}>={strategy.min_prediction_prob} {'ok' if meets_prob else 'no'}, "
            f"sent {sentiment:.4f}>={strategy.min_sentiment_score} {'ok' if meets_sent else 'no'}"
        )
    return Eligibility(
        eligible=eligible,
        probability=probability,
        sentiment=sentiment,
        reason=reason,
    )
