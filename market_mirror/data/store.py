"""Local store contract and the in-memory backend."""

import asyncio
from abc import ABC, abstractmethod
from copy import deepcopy
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence
import logging

from .errors import PersistenceError
from .models import Item, FavoriteMark

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    inserted: int = 0
    updated: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated


class LocalStore(ABC):
    """Durable keyed storage for items and favorite marks.

    Backends must keep exactly one item row per id, keep favorite marks
    independent of item rows, and apply a snapshot all-or-nothing.
    Failures are raised as ``PersistenceError``.
    """

    async def initialize(self):
        """Prepare the backend for use."""

    async def close(self):
        """Release backend resources."""

    @abstractmethod
    async def upsert_item(self, item: Item) -> None:
        """Insert the item, or update the row with the same id in place."""

    @abstractmethod
    async def all_items(self) -> List[Item]:
        """Return every stored item."""

    @abstractmethod
    async def item_by_id(self, item_id: str) -> Optional[Item]:
        """Return the stored item with this id, if any."""

    @abstractmethod
    async def count_items(self) -> int:
        """Return the number of stored item rows."""

    @abstractmethod
    async def apply_snapshot(self, items: Sequence[Item]) -> ReconcileResult:
        """Reconcile a snapshot in a single transaction.

        Upserts every item, leaves rows absent from the snapshot untouched and
        records the snapshot's ids as the current membership.
        """

    @abstractmethod
    async def snapshot_item_ids(self) -> List[str]:
        """Ids of the last applied snapshot, in snapshot order."""

    @abstractmethod
    async def clear_items(self) -> int:
        """Delete every item row and the snapshot membership.

        Favorite marks are kept. Returns the number of item rows deleted.
        """

    @abstractmethod
    async def upsert_favorite(self, item_id: str, date_added: datetime) -> None:
        """Create or replace the favorite mark for an item id."""

    @abstractmethod
    async def delete_favorite(self, item_id: str) -> bool:
        """Delete the favorite mark. Returns False if there was none."""

    @abstractmethod
    async def get_favorite(self, item_id: str) -> Optional[FavoriteMark]:
        """Return the favorite mark for an item id, if any."""

    @abstractmethod
    async def all_favorites(self) -> List[FavoriteMark]:
        """Return every favorite mark, newest first."""


class MemoryStore(LocalStore):
    """Non-durable store keeping everything in process memory.

    Snapshots are applied to copies which are swapped in only once the
    whole pass succeeded.
    """

    def __init__(self):
        self._items: Dict[str, Item] = {}
        self._favorites: Dict[str, FavoriteMark] = {}
        self._snapshot_ids: List[str] = []
        self._lock = asyncio.Lock()

    async def upsert_item(self, item: Item) -> None:
        async with self._lock:
            self._items[item.id] = self._stored(item)

    async def all_items(self) -> List[Item]:
        return [deepcopy(item) for item in self._items.values()]

    async def item_by_id(self, item_id: str) -> Optional[Item]:
        item = self._items.get(item_id)
        return deepcopy(item) if item is not None else None

    async def count_items(self) -> int:
        return len(self._items)

    async def apply_snapshot(self, items: Sequence[Item]) -> ReconcileResult:
        async with self._lock:
            staged = dict(self._items)
            result = ReconcileResult()
            try:
                for item in items:
                    if item.id in staged:
                        result.updated += 1
                    else:
                        result.inserted += 1
                    staged[item.id] = self._stage(item)
            except PersistenceError:
                raise
            except Exception as e:
                logger.error(f"Failed to stage snapshot: {e}")
                raise PersistenceError("Failed to apply snapshot", e) from e

            self._items = staged
            self._snapshot_ids = [item.id for item in items]
            return result

    def _stage(self, item: Item) -> Item:
        """Copy an item into its stored form."""
        return self._stored(item)

    @staticmethod
    def _stored(item: Item) -> Item:
        stored = deepcopy(item)
        stored.is_favorite = False
        return stored

    async def snapshot_item_ids(self) -> List[str]:
        return list(self._snapshot_ids)

    async def clear_items(self) -> int:
        async with self._lock:
            deleted = len(self._items)
            self._items = {}
            self._snapshot_ids = []
            return deleted

    async def upsert_favorite(self, item_id: str, date_added: datetime) -> None:
        async with self._lock:
            self._favorites[item_id] = FavoriteMark(item_id=item_id, date_added=date_added)

    async def delete_favorite(self, item_id: str) -> bool:
        async with self._lock:
            return self._favorites.pop(item_id, None) is not None

    async def get_favorite(self, item_id: str) -> Optional[FavoriteMark]:
        return self._favorites.get(item_id)

    async def all_favorites(self) -> List[FavoriteMark]:
        return sorted(self._favorites.values(), key=lambda mark: (mark.date_added, mark.item_id), reverse=True)
