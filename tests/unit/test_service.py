"""Tests for building the sync engine from configuration."""

import pytest

from market_mirror.core.config import ConfigManager
from market_mirror.data.clients.coingecko import CoinGeckoClient
from market_mirror.data.database import DatabaseManager
from market_mirror.data.service import build_sync_engine, create_store, create_remote
from market_mirror.data.store import MemoryStore
from market_mirror.data.sync import StaleItemPolicy, EmptySnapshotPolicy


class TestCreateStore:
    """Test store selection."""

    def test_sqlite_default(self, temp_dir):
        store = create_store({"path": str(temp_dir / "mirror.db")})

        assert isinstance(store, DatabaseManager)
        assert store.db_path == temp_dir / "mirror.db"

    def test_home_directory_expanded(self):
        store = create_store({"backend": "sqlite", "path": "~/mirror.db"})

        assert "~" not in str(store.db_path)

    def test_memory(self):
        assert isinstance(create_store({"backend": "memory"}), MemoryStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_store({"backend": "redis"})


class TestCreateRemote:
    """Test remote source construction."""

    def test_coingecko_settings(self):
        remote = create_remote({
            "currency": "gbp",
            "api_key": "secret",
            "base_url": "https://pro-api.coingecko.com/api/v3",
            "max_retries": 1,
        })

        assert isinstance(remote, CoinGeckoClient)
        assert remote.currency == "gbp"
        assert remote.config.api_key == "secret"
        assert remote.config.base_url == "https://pro-api.coingecko.com/api/v3"
        assert remote.config.max_retries == 1

    def test_empty_api_key_treated_as_absent(self):
        assert create_remote({"api_key": ""}).config.api_key is None

    def test_numeric_api_key_sent_as_text(self, monkeypatch):
        monkeypatch.setenv("MARKET_MIRROR_REMOTE__API_KEY", "12345")
        manager = ConfigManager()
        manager.initialize()

        remote = create_remote(manager.get("remote"))

        assert remote.config.api_key == "12345"
        assert remote._get_auth_headers() == {"x-cg-demo-api-key": "12345"}


class TestBuildSyncEngine:
    """Test engine wiring."""

    def test_from_config(self, temp_dir):
        engine = build_sync_engine({
            "storage": {"backend": "memory"},
            "sync": {"snapshot_limit": 10, "stale_items": "show", "empty_snapshot": "accept"},
        })

        assert isinstance(engine.store, MemoryStore)
        assert isinstance(engine.remote, CoinGeckoClient)
        assert engine.registry.store is engine.store
        assert engine.config.snapshot_limit == 10
        assert engine.config.stale_items is StaleItemPolicy.SHOW
        assert engine.config.empty_snapshot is EmptySnapshotPolicy.ACCEPT

    def test_injected_collaborators(self, fake_remote_factory):
        store = MemoryStore()
        remote = fake_remote_factory([])

        engine = build_sync_engine({"storage": {"backend": "sqlite"}}, store=store, remote=remote)

        assert engine.store is store
        assert engine.remote is remote

    def test_independent_instances(self):
        config = {"storage": {"backend": "memory"}}

        assert build_sync_engine(config).store is not build_sync_engine(config).store

    async def test_end_to_end_with_fake_remote(self, temp_dir, fake_remote_factory, sample_items):
        remote = fake_remote_factory(sample_items)
        config = {"storage": {"path": str(temp_dir / "e2e.db")}, "sync": {"snapshot_limit": 3}}

        async with build_sync_engine(config, remote=remote) as engine:
            await engine.load()

        async with build_sync_engine(config, remote=fake_remote_factory([])) as engine:
            items = await engine.load()

        assert [item.id for item in items] == ["bitcoin", "ethereum", "tether"]
        assert remote.calls == 1
