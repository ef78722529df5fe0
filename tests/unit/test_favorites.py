"""Tests for the favorite registry."""

import asyncio
import pytest
from datetime import datetime, timezone, timedelta

from market_mirror.data.database import DatabaseManager
from market_mirror.data.favorites import FavoriteRegistry
from market_mirror.data.store import MemoryStore


class TickingClock:
    """Clock advancing one second per call."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture(params=["memory", "sqlite"])
async def registry(request, temp_dir):
    """Registry over each store backend."""
    if request.param == "memory":
        store = MemoryStore()
    else:
        store = DatabaseManager(temp_dir / "favorites.db")
    await store.initialize()

    yield FavoriteRegistry(store, clock=TickingClock())

    await store.close()


class TestToggle:
    """Test toggling favorite marks."""

    async def test_toggle_on_and_off(self, registry):
        assert await registry.toggle("bitcoin") is True
        assert await registry.is_favorite("bitcoin") is True

        assert await registry.toggle("bitcoin") is False
        assert await registry.is_favorite("bitcoin") is False

    async def test_item_does_not_need_to_exist(self, registry):
        assert await registry.toggle("never-seen") is True
        assert await registry.favorite_ids() == {"never-seen"}

    async def test_empty_id_rejected(self, registry):
        with pytest.raises(ValueError):
            await registry.toggle("")

    async def test_other_ids_unaffected(self, registry):
        await registry.toggle("bitcoin")
        await registry.toggle("ethereum")
        await registry.toggle("bitcoin")

        assert await registry.favorite_ids() == {"ethereum"}

    async def test_concurrent_duplicate_toggles_flip_once(self, registry):
        results = await asyncio.gather(registry.toggle("bitcoin"), registry.toggle("bitcoin"))

        assert results == [True, True]
        assert await registry.is_favorite("bitcoin") is True

    async def test_concurrent_toggles_for_different_ids(self, registry):
        results = await asyncio.gather(registry.toggle("bitcoin"), registry.toggle("ethereum"))

        assert results == [True, True]
        assert await registry.favorite_ids() == {"bitcoin", "ethereum"}

    async def test_sequential_toggles_after_concurrent_batch(self, registry):
        await asyncio.gather(registry.toggle("bitcoin"), registry.toggle("bitcoin"))

        assert await registry.toggle("bitcoin") is False


class TestOrdering:
    """Test ordering by date added."""

    async def test_most_recent_first(self, registry):
        for item_id in ("bitcoin", "ethereum", "tether"):
            await registry.toggle(item_id)

        assert await registry.all_favorite_ids() == ["tether", "ethereum", "bitcoin"]
        assert await registry.all_favorite_ids(most_recent_first=False) == ["bitcoin", "ethereum", "tether"]

    async def test_retoggle_moves_to_front(self, registry):
        await registry.toggle("bitcoin")
        await registry.toggle("ethereum")
        await registry.toggle("bitcoin")
        await registry.toggle("bitcoin")

        assert await registry.all_favorite_ids() == ["bitcoin", "ethereum"]
