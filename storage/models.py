"""SQLite table definitions."""

CREATE_USERS_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    address TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

CREATE_STRATEGIES_TABLE = """
CREATE TABLE IF NOT EXISTS strategies (
    id TEXT PRIMARY KEY,
    owner_address TEXT NOT NULL,
    market_id TEXT NOT NULL,
    sentiment_tag TEXT NOT NULL,
    min_prediction_prob REAL NOT NULL,
    min_sentiment_score REAL NOT NULL,
    notional_amount REAL NOT NULL,
    max_slippage_bps INTEGER NOT NULL,
    expiry_timestamp TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'ACTIVE'
        CHECK (status IN ('ACTIVE', 'EXECUTED', 'EXPIRED')),
    last_executed_at TEXT,
    last_tx_ref TEXT,
    external_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    user_id TEXT REFERENCES users(id) ON DELETE SET NULL ON UPDATE CASCADE
);
"""

CREATE_MARKET_SNAPSHOTS_TABLE = """
CREATE TABLE IF NOT EXISTS market_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    market_id TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    probability REAL NOT NULL
);
"""

CREATE_SENTIMENT_SNAPSHOTS_TABLE = """
CREATE TABLE IF NOT EXISTS sentiment_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tag TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    score REAL NOT NULL
);
"""

CREATE_EXECUTION_LOGS_TABLE = """
CREATE TABLE IF NOT EXISTS execution_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    strategy_id TEXT NOT NULL REFERENCES strategies(id) ON DELETE CASCADE ON UPDATE CASCADE,
    timestamp TEXT NOT NULL,
    success INTEGER NOT NULL,
    tx_ref TEXT,
    reason TEXT
);
"""

CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS ix_strategies_status ON strategies(status)",
    "CREATE INDEX IF NOT EXISTS ix_strategies_pair ON strategies(market_id, sentiment_tag, status)",
    "CREATE INDEX IF NOT EXISTS ix_market_snapshots_market_ts ON market_snapshots(market_id, timestamp)",
    "CREATE INDEX IF NOT EXISTS ix_sentiment_snapshots_tag_ts ON sentiment_snapshots(tag, timestamp)",
    "CREATE INDEX IF NOT EXISTS ix_execution_logs_strategy_ts ON execution_logs(strategy_id, timestamp)",
]

ALL_TABLES = [
    CREATE_USERS_TABLE,
    CREATE_STRATEGIES_TABLE,
    CREATE_MARKET_SNAPSHOTS_TABLE,
    CREATE_SENTIMENT_SNAPSHOTS_TABLE,
    CREATE_EXECUTION_LOGS_TABLE,
]
