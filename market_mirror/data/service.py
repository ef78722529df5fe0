"""Construction of the sync engine and its collaborators from configuration."""

from pathlib import Path
from typing import Any, Dict, Optional
import logging

from .api_client import RemoteSource
from .clients.coingecko import CoinGeckoClient, DEFAULT_BASE_URL
from .database import DatabaseManager
from .favorites import FavoriteRegistry
from .store import LocalStore, MemoryStore
from .sync import SyncEngine, SyncConfig

logger = logging.getLogger(__name__)


def create_store(storage_config: Optional[Dict[str, Any]] = None) -> LocalStore:
    """Create the local store named by the ``storage`` section.

    Args:
        storage_config: ``backend`` is ``sqlite`` (default) or ``memory``;
            ``path`` is the SQLite file

    Returns:
        Uninitialized store
    """
    storage_config = storage_config or {}
    backend = str(storage_config.get('backend', 'sqlite')).lower()

    if backend == 'memory':
        logger.warning("Using in-memory store; cached items will not survive a restart")
        return MemoryStore()
    if backend == 'sqlite':
        path = Path(storage_config.get('path', 'market_mirror.db')).expanduser()
        return DatabaseManager(path)

    raise ValueError(f"Unknown storage backend: {backend}")


def create_remote(remote_config: Optional[Dict[str, Any]] = None) -> RemoteSource:
    """Create the CoinGecko remote source from the ``remote`` section."""
    remote_config = remote_config or {}
    return CoinGeckoClient(
        api_key=str(remote_config['api_key']) if remote_config.get('api_key') else None,
        currency=remote_config.get('currency', 'usd'),
        base_url=remote_config.get('base_url', DEFAULT_BASE_URL),
        timeout=int(remote_config.get('timeout', 30)),
        max_retries=int(remote_config.get('max_retries', 3)),
        retry_delay=float(remote_config.get('retry_delay', 1.0)),
    )


def build_sync_engine(config: Optional[Dict[str, Any]] = None,
                      store: Optional[LocalStore] = None,
                      remote: Optional[RemoteSource] = None) -> SyncEngine:
    """Wire a sync engine from configuration.

    Explicit ``store`` or ``remote`` arguments take precedence over the
    configuration, which lets tests and embedding code inject their own.

    Args:
        config: Full application configuration
        store: Local store to use instead of the configured one
        remote: Remote source to use instead of the configured one

    Returns:
        Engine that still needs ``start()`` (or ``async with``)
    """
    config = config or {}
    store = store or create_store(config.get('storage'))
    remote = remote or create_remote(config.get('remote'))
    registry = FavoriteRegistry(store)
    sync_config = SyncConfig.from_dict(config.get('sync'))

    logger.debug(
        f"Built sync engine (limit={sync_config.snapshot_limit}, "
        f"stale={sync_config.stale_items.value}, empty={sync_config.empty_snapshot.value})"
    )
    return SyncEngine(store, remote, registry, sync_config)
