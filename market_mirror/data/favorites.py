"""Favorite marks, kept independently of item snapshots."""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set
import logging

from .store import LocalStore

logger = logging.getLogger(__name__)


class FavoriteRegistry:
    """Owns favorite state for item ids.

    A mark exists whether or not its item is present in the latest snapshot,
    and the sync path never creates or deletes marks. Concurrent duplicate
    toggles for the same id share one in-flight flip; toggles for different
    ids do not wait on each other.
    """

    def __init__(self, store: LocalStore,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._pending: Dict[str, asyncio.Task] = {}

    async def toggle(self, item_id: str) -> bool:
        """Flip the favorite state of an item.

        Args:
            item_id: Item identifier; the item does not need to exist

        Returns:
            The new favorite state
        """
        if not item_id:
            raise ValueError("item_id must be a non-empty string")

        task = self._pending.get(item_id)
        if task is None:
            task = asyncio.ensure_future(self._toggle(item_id))
            self._pending[item_id] = task
            task.add_done_callback(lambda done: self._forget(item_id, done))
        else:
            logger.debug(f"Joining in-flight favorite toggle for {item_id}")

        return await asyncio.shield(task)

    def _forget(self, item_id: str, task: asyncio.Task):
        if self._pending.get(item_id) is task:
            del self._pending[item_id]

    async def _toggle(self, item_id: str) -> bool:
        if await self.store.get_favorite(item_id) is not None:
            await self.store.delete_favorite(item_id)
            logger.info(f"Removed {item_id} from favorites")
            return False

        await self.store.upsert_favorite(item_id, self._clock())
        logger.info(f"Added {item_id} to favorites")
        return True

    async def is_favorite(self, item_id: str) -> bool:
        return await self.store.get_favorite(item_id) is not None

    async def favorite_ids(self) -> Set[str]:
        return {mark.item_id for mark in await self.store.all_favorites()}

    async def all_favorite_ids(self, most_recent_first: bool = True) -> List[str]:
        """Favorite item ids ordered by the date they were added.

        Args:
            most_recent_first: Newest marks first when True, oldest first otherwise
        """
        ids = [mark.item_id for mark in await self.store.all_favorites()]
        if not most_recent_first:
            ids.reverse()
        return ids
