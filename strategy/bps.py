"""Basis-point encoding of probabilities and sentiment scores.

The settlement backend only accepts unsigned integers in [0, 10000], so these
maps must stay bit-exact. Rounding is half-up, not Python's round-half-even.
"""
import math

from strategy.thresholds import BPS_SCALE


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def prob_to_bps(probability: float) -> int:
    """Probability in [0, 1] -> [0, 10000]."""
    return _round_half_up(probability * BPS_SCALE)


def bps_to_prob(bps: int) -> float:
    return bps / BPS_SCALE


def sentiment_to_bps(score: float) -> int:
    """Sentiment in [-1, 1] -> [0, 10000] via (score + 1) * 5000."""
    return _round_half_up((score + 1) * (BPS_SCALE / 2))


def bps_to_sentiment(bps: int) -> float:
    return bps / (BPS_SCALE / 2) - 1
