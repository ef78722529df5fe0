"""
Market Mirror - a local, offline-capable mirror of remote market listings.

The package keeps a SQLite copy of the top-ranked items from a remote
market-data service, reconciles new snapshots into it, and tracks
user favorites that survive every refresh.
"""

__version__ = "0.1.0"
__author__ = "Market Mirror Team"
__license__ = "MIT"

# Core imports for public API
from market_mirror.core.config import ConfigManager
from market_mirror.data.errors import (
    SyncError,
    TransportError,
    EmptySnapshotError,
    DecodingError,
    PersistenceError,
)
from market_mirror.data.models import Item, FavoriteMark
from market_mirror.data.store import LocalStore, MemoryStore
from market_mirror.data.database import DatabaseManager
from market_mirror.data.favorites import FavoriteRegistry
from market_mirror.data.sync import SyncEngine, SyncConfig, SyncState
from market_mirror.data.service import build_sync_engine

__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "ConfigManager",
    "SyncError",
    "TransportError",
    "EmptySnapshotError",
    "DecodingError",
    "PersistenceError",
    "Item",
    "FavoriteMark",
    "LocalStore",
    "MemoryStore",
    "DatabaseManager",
    "FavoriteRegistry",
    "SyncEngine",
    "SyncConfig",
    "SyncState",
    "build_sync_engine",
]
