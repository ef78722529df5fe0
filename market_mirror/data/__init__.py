"""Data layer for the market mirror.

This module provides the item models, the local stores, the remote source
clients and the sync engine that reconciles snapshots into the store.
"""

from .errors import (
    SyncError,
    TransportError,
    EmptySnapshotError,
    DecodingError,
    PersistenceError
)

from .models import Item, FavoriteMark, decode_item, decode_items, sort_by_rank
from .store import LocalStore, MemoryStore, ReconcileResult
from .database import DatabaseManager
from .api_client import RemoteSource
from .favorites import FavoriteRegistry
from .sync import (
    SyncEngine,
    SyncConfig,
    SyncState,
    SyncStatus,
    StaleItemPolicy,
    EmptySnapshotPolicy
)
from .service import build_sync_engine

__all__ = [
    'SyncError',
    'TransportError',
    'EmptySnapshotError',
    'DecodingError',
    'PersistenceError',
    'Item',
    'FavoriteMark',
    'decode_item',
    'decode_items',
    'sort_by_rank',
    'LocalStore',
    'MemoryStore',
    'ReconcileResult',
    'DatabaseManager',
    'RemoteSource',
    'FavoriteRegistry',
    'SyncEngine',
    'SyncConfig',
    'SyncState',
    'SyncStatus',
    'StaleItemPolicy',
    'EmptySnapshotPolicy',
    'build_sync_engine'
]
