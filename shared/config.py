"""Configuration management for sentimentflow."""
import os
from pydantic import BaseModel


class Config(BaseModel):
    """Application configuration loaded from environment variables."""
    TRADING_MODE: str = "paper"
    DB_PATH: str = "data/sentimentflow.db"
    LOG_LEVEL: str = "INFO"
    ENGINE_INTERVAL_SECONDS: int = 60
    POLYMARKET_FETCH_INTERVAL_MINUTES: int = 5
    SENTIMENT_FETCH_INTERVAL_MINUTES: int = 10
    INTER_STRATEGY_DELAY_SECONDS: float = 3.0
    REGISTRATION_DELAY_SECONDS: float = 2.0
    SETTLEMENT_URL: str = "http://localhost:8090"
    SETTLEMENT_API_KEY: str = ""
    SETTLEMENT_TIMEOUT_SECONDS: float = 30.0
    RATE_LIMIT_RETRY_SECONDS: float = 10.0
    DEFAULT_ADMIN_WALLET: str = "0x_ADMIN_WALLET"
    ALPHA_VANTAGE_API_KEY: str = ""
    COINGECKO_API_KEY: str = ""
    DASHBOARD_PORT: int = 8080

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            TRADING_MODE=os.getenv("TRADING_MODE", "paper"),
            DB_PATH=os.getenv("DB_PATH", "data/sentimentflow.db"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
            ENGINE_INTERVAL_SECONDS=int(os.getenv("ENGINE_INTERVAL_SECONDS", "60")),
            POLYMARKET_FETCH_INTERVAL_MINUTES=int(os.getenv("POLYMARKET_FETCH_INTERVAL_MINUTES", "5")),
            SENTIMENT_FETCH_INTERVAL_MINUTES=int(os.getenv("SENTIMENT_FETCH_INTERVAL_MINUTES", "10")),
            INTER_STRATEGY_DELAY_SECONDS=float(os.getenv("INTER_STRATEGY_DELAY_SECONDS", "3")),
            REGISTRATION_DELAY_SECONDS=float(os.getenv("REGISTRATION_DELAY_SECONDS", "2")),
            SETTLEMENT_URL=os.getenv("SETTLEMENT_URL", "http://localhost:8090"),
            SETTLEMENT_API_KEY=os.getenv("SETTLEMENT_API_KEY", ""),
            SETTLEMENT_TIMEOUT_SECONDS=float(os.getenv("SETTLEMENT_TIMEOUT_SECONDS", "30")),
            RATE_LIMIT_RETRY_SECONDS=float(os.getenv("RATE_LIMIT_RETRY_SECONDS", "10")),
            DEFAULT_ADMIN_WALLET=os.getenv("DEFAULT_ADMIN_WALLET", "0x_ADMIN_WALLET"),
            ALPHA_VANTAGE_API_KEY=os.getenv("ALPHA_VANTAGE_API_KEY", ""),
            COINGECKO_API_KEY=os.getenv("COINGECKO_API_KEY", ""),
            DASHBOARD_PORT=int(os.getenv("DASHBOARD_PORT", "8080")),
        )

    @property
    def is_live(self) -> bool:
        return self.TRADING_MODE == "live"
