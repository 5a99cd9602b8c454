"""Configurable constants for the strategy layer."""
from datetime import timedelta

# Discovery only looks at snapshots this recent
DISCOVERY_LOOKBACK = timedelta(hours=24)

# Sentiment must score strictly above this to count as an opportunity
DISCOVERY_MIN_SENTIMENT = 0.1

# Defaults for strategies created by discovery
DEFAULT_MIN_PREDICTION_PROB = 0.05
DEFAULT_MIN_SENTIMENT_SCORE = 0.15
DEFAULT_NOTIONAL_AMOUNT = 50.0
DEFAULT_MAX_SLIPPAGE_BPS = 100
DEFAULT_EXPIRY = timedelta(days=7)

# Backtest window when the caller gives none
DEFAULT_BACKTEST_WINDOW = timedelta(days=7)

# Pauses that keep us under settlement backend rate limits
INTER_STRATEGY_DELAY_SECONDS = 3.0
POST_REGISTRATION_DELAY_SECONDS = 2.0

# Basis-point scale used at the settlement boundary
BPS_SCALE = 10000
