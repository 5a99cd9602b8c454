"""Test configuration and fixtures."""
import sys
from pathlib import Path

import pytest_asyncio

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(project_root / "tests"))

from execution.paper_settlement import PaperSettlementClient  # noqa: E402
from storage.db import Database  # noqa: E402
from storage.signal_store import SignalStore  # noqa: E402
from storage.strategy_repository import StrategyRepository  # noqa: E402


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "test.db"))
    await database.init()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def signals(db):
    return SignalStore(db)


@pytest_asyncio.fixture
async def strategies(db):
    return StrategyRepository(db)


@pytest_asyncio.fixture
async def paper():
    return PaperSettlementClient()
