"""
Pytest configuration and shared fixtures for the test suite.

This module provides the fake remote source, item factories and temporary
stores used across the unit tests.
"""

import asyncio
import tempfile
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import pytest
from click.testing import CliRunner

from market_mirror.core.context import AppContext, set_context
from market_mirror.data.api_client import RemoteSource
from market_mirror.data.database import DatabaseManager
from market_mirror.data.models import Item
from market_mirror.data.store import MemoryStore


class FakeRemote(RemoteSource):
    """Remote source serving queued snapshots and counting fetches.

    Each fetch pops the next queued snapshot; the last one is repeated. A
    queued exception is raised instead of returned. When ``gate`` is set the
    fetch waits for it, which lets tests hold a refresh in flight.
    """

    name = "fake"

    def __init__(self, *snapshots):
        self.snapshots = list(snapshots)
        self.calls = 0
        self.limits: List[int] = []
        self.gate: Optional[asyncio.Event] = None
        self.started = False
        self.stopped = False

    async def fetch_snapshot(self, limit: int) -> List[Item]:
        self.calls += 1
        self.limits.append(limit)
        if self.gate is not None:
            await self.gate.wait()

        if not self.snapshots:
            return []
        result = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        if isinstance(result, BaseException):
            raise result
        return list(result)

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True


def make_item(item_id: str, rank: Optional[int] = None, price: str = "1.00", **kwargs) -> Item:
    """Build an item with sensible defaults for tests."""
    defaults = dict(
        id=item_id,
        symbol=kwargs.pop('symbol', item_id[:3]),
        name=kwargs.pop('name', item_id.title()),
        rank=rank,
        current_price=Decimal(price),
        market_cap=Decimal("1000000"),
        last_updated=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    defaults.update(kwargs)
    return Item(**defaults)


@pytest.fixture
def item_factory():
    """Factory for test items."""
    return make_item


@pytest.fixture
def sample_items():
    """Three ranked items as a remote snapshot would deliver them."""
    return [
        make_item("bitcoin", rank=1, price="50000.00", symbol="btc", name="Bitcoin"),
        make_item("ethereum", rank=2, price="3000.00", symbol="eth", name="Ethereum"),
        make_item("tether", rank=3, price="1.00", symbol="usdt", name="Tether"),
    ]


@pytest.fixture
def fake_remote_factory():
    """Factory for fake remote sources."""
    return FakeRemote


@pytest.fixture
def cli_runner():
    """Create a Click CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
async def temp_db(temp_dir):
    """Initialized SQLite store in a temporary directory."""
    db_manager = DatabaseManager(temp_dir / "test.db")
    await db_manager.initialize()

    yield db_manager

    await db_manager.close()


@pytest.fixture
async def memory_store():
    """Initialized in-memory store."""
    store = MemoryStore()
    await store.initialize()
    return store


@pytest.fixture(autouse=True)
def reset_app_context():
    """Give every test a fresh application context."""
    set_context(AppContext())
    yield
    set_context(AppContext())
