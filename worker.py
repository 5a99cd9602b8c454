"""Main entry point: wires storage, settlement, engine, fetchers and API together."""
import asyncio
import logging
import signal
import sys
from typing import Awaitable, Callable

from dotenv import load_dotenv

load_dotenv()

from shared.config import Config
from shared.logging import setup_logging
from execution.paper_settlement import PaperSettlementClient
from execution.settlement_client import HttpSettlementClient, SettlementClient
from feeds.polymarket_fetcher import PolymarketFetcher
from feeds.sentiment_fetcher import SentimentFetcher
from storage.db import Database
from storage.signal_store import SignalStore
from storage.strategy_repository import StrategyRepository
from strategy.backtest import BacktestSimulator
from strategy.discovery import DiscoveryMatcher
from strategy.engine import ExecutionEngine
from dashboard.main import Services, app as dashboard_app, set_services

logger = logging.getLogger("sentimentflow")


def build_settlement_client(config: Config) -> SettlementClient:
    if config.is_live:
        return HttpSettlementClient(
            base_url=config.SETTLEMENT_URL,
            api_key=config.SETTLEMENT_API_KEY,
            timeout=config.SETTLEMENT_TIMEOUT_SECONDS,
            rate_limit_retry_seconds=config.RATE_LIMIT_RETRY_SECONDS,
        )
    return PaperSettlementClient()


class Worker:
    """Runs the engine, both fetchers and the API until told to stop."""

    def __init__(self, config: Config):
        self.config = config
        self._shutdown = asyncio.Event()
        self.db: Database | None = None
        self.settlement: SettlementClient | None = None
        self.engine: ExecutionEngine | None = None
        self.polymarket: PolymarketFetcher | None = None
        self.sentiment: SentimentFetcher | None = None

    async def start(self):
        logger.info(
            "Starting worker",
            extra={"mode": self.config.TRADING_MODE, "db_path": self.config.DB_PATH},
        )

        # A broken database is fatal; let it propagate.
        self.db = Database(self.config.DB_PATH)
        await self.db.init()

        signals = SignalStore(self.db)
        strategies = StrategyRepository(self.db)
        self.settlement = build_settlement_client(self.config)

        discovery = DiscoveryMatcher(
            signals,
            strategies,
            self.settlement,
            admin_address=self.config.DEFAULT_ADMIN_WALLET,
            registration_delay=self.config.REGISTRATION_DELAY_SECONDS,
        )
        self.engine = ExecutionEngine(
            signals,
            strategies,
            self.settlement,
            discovery=discovery,
            inter_strategy_delay=self.config.INTER_STRATEGY_DELAY_SECONDS,
        )
        self.polymarket = PolymarketFetcher(signals)
        self.sentiment = SentimentFetcher(
            signals,
            alpha_vantage_key=self.config.ALPHA_VANTAGE_API_KEY,
            coingecko_key=self.config.COINGECKO_API_KEY,
        )

        set_services(Services(
            db=self.db,
            signals=signals,
            strategies=strategies,
            settlement=self.settlement,
            engine=self.engine,
            simulator=BacktestSimulator(signals),
        ))

        # Initial pass so the first engine run sees fresh data
        await self._guarded("polymarket", self.polymarket.run)
        await self._guarded("sentiment", self.sentiment.run)
        await self._guarded("engine", self.engine.run_once)

        tasks = [
            asyncio.create_task(
                self._every(self.config.POLYMARKET_FETCH_INTERVAL_MINUTES * 60, "polymarket", self.polymarket.run),
                name="polymarket",
            ),
            asyncio.create_task(
                self._every(self.config.SENTIMENT_FETCH_INTERVAL_MINUTES * 60, "sentiment", self.sentiment.run),
                name="sentiment",
            ),
            asyncio.create_task(
                self._every(self.config.ENGINE_INTERVAL_SECONDS, "engine", self.engine.run_once),
                name="engine",
            ),
            asyncio.create_task(self._run_dashboard(), name="dashboard"),
        ]
        logger.info("Worker started")

        await self._shutdown.wait()

        logger.info("Shutting down...")
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.settlement.close()
        await self.db.close()
        logger.info("Shutdown complete")

    async def _guarded(self, name: str, job: Callable[[], Awaitable[object]]):
        try:
            await job()
        except Exception as e:
            logger.exception(f"{name} job failed: {e}")

    async def _every(self, interval: float, name: str, job: Callable[[], Awaitable[object]]):
        """Run ``job`` every ``interval`` seconds; a run never overlaps the next."""
        logger.info(f"{name} scheduled", extra={"interval_seconds": interval})
        while not self._shutdown.is_set():
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            await self._guarded(name, job)

    async def _run_dashboard(self):
        import uvicorn
        config = uvicorn.Config(
            dashboard_app,
            host="0.0.0.0",
            port=self.config.DASHBOARD_PORT,
            log_level="warning",
        )
        server = uvicorn.Server(config)
        logger.info("Dashboard starting", extra={"port": self.config.DASHBOARD_PORT})
        await server.serve()

    def shutdown(self):
        self._shutdown.set()


def main():
    config = Config.from_env()
    setup_logging("sentimentflow", config.LOG_LEVEL.upper())

    worker = Worker(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig, frame):
        logger.info(f"Received signal {sig}")
        loop.call_soon_threadsafe(worker.shutdown)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        loop.run_until_complete(worker.start())
    except Exception as e:
        logger.critical(f"Failed to start worker: {e}", exc_info=True)
        sys.exit(1)
    finally:
        loop.close()


if __name__ == "__main__":
    main()
