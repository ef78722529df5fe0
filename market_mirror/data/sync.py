"""Cache-first synchronization of remote snapshots into the local store."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging

from .api_client import RemoteSource
from .errors import SyncError, TransportError, EmptySnapshotError
from .favorites import FavoriteRegistry
from .models import Item, sort_by_rank
from .store import LocalStore

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Read path states."""
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    FAILED = "failed"


class StaleItemPolicy(Enum):
    """Visibility of stored items missing from the latest snapshot."""
    HIDE = "hide"
    SHOW = "show"


class EmptySnapshotPolicy(Enum):
    """How an empty remote snapshot is treated."""
    REJECT = "reject"
    ACCEPT = "accept"


@dataclass
class SyncConfig:
    """Sync engine settings."""

    snapshot_limit: int = 20
    stale_items: StaleItemPolicy = StaleItemPolicy.HIDE
    empty_snapshot: EmptySnapshotPolicy = EmptySnapshotPolicy.REJECT

    def __post_init__(self):
        if isinstance(self.stale_items, str):
            self.stale_items = StaleItemPolicy(self.stale_items.lower())
        if isinstance(self.empty_snapshot, str):
            self.empty_snapshot = EmptySnapshotPolicy(self.empty_snapshot.lower())
        if self.snapshot_limit < 1:
            raise ValueError(f"snapshot_limit must be positive, got {self.snapshot_limit}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SyncConfig':
        """Build from the ``sync`` configuration section."""
        data = data or {}
        return cls(
            snapshot_limit=int(data.get('snapshot_limit', cls.snapshot_limit)),
            stale_items=data.get('stale_items', StaleItemPolicy.HIDE),
            empty_snapshot=data.get('empty_snapshot', EmptySnapshotPolicy.REJECT),
        )


@dataclass
class SyncStatus:
    """Point-in-time view of the engine's read path."""

    state: SyncState
    items: List[Item] = field(default_factory=list)
    error: Optional[SyncError] = None
    last_refresh: Optional[datetime] = None


StatusListener = Callable[[SyncStatus], None]


class SyncEngine:
    """Decides between cache and remote, and reconciles snapshots.

    ``load`` prefers the local store and only fetches when it is empty or a
    refresh is forced. ``refresh`` always fetches; concurrent refreshes share
    a single in-flight reconciliation whose commit is not interrupted when a
    caller gives up waiting.
    """

    def __init__(self, store: LocalStore, remote: RemoteSource,
                 registry: Optional[FavoriteRegistry] = None,
                 config: Optional[SyncConfig] = None):
        self.store = store
        self.remote = remote
        self.registry = registry or FavoriteRegistry(store)
        self.config = config or SyncConfig()

        self._state = SyncState.IDLE
        self._items: List[Item] = []
        self._error: Optional[SyncError] = None
        self._last_refresh: Optional[datetime] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._listeners: List[StatusListener] = []

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self):
        """Initialize the store and the remote source."""
        await self.store.initialize()
        await self.remote.start()
        logger.info("Sync engine started")

    async def stop(self):
        """Release remote and store resources."""
        if self._refresh_task is not None:
            await asyncio.wait({self._refresh_task})
        await self.remote.stop()
        await self.store.close()
        logger.info("Sync engine stopped")

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def status(self) -> SyncStatus:
        return SyncStatus(
            state=self._state,
            items=list(self._items),
            error=self._error,
            last_refresh=self._last_refresh,
        )

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Call ``listener`` with the new status on every state transition.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _transition(self, state: SyncState, error: Optional[SyncError] = None):
        if state is SyncState.LOADING and self._state is SyncState.LOADING:
            return

        self._state = state
        self._error = error
        logger.debug(f"Sync state -> {state.value}")

        status = self.status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Sync status listener failed: {e}")

    def current_items(self) -> List[Item]:
        """Last successfully merged set, annotated with favorite flags."""
        return list(self._items)

    async def load(self, force_refresh: bool = False) -> List[Item]:
        """Return items, preferring the local store.

        Args:
            force_refresh: Always fetch from the remote source. A refresh
                that is already running is joined either way.

        Returns:
            Current items ordered by rank

        Raises:
            SyncError: If the store fails, or a required fetch fails
        """
        if force_refresh or self._refresh_task is not None:
            return await self.refresh()

        self._transition(SyncState.LOADING)
        try:
            cached_count = await self.store.count_items()
            if cached_count:
                items = await self._current_view()
            else:
                items = None
        except SyncError as e:
            self._transition(SyncState.FAILED, e)
            raise

        if items is None:
            logger.info("Local cache is empty, fetching from remote source")
            return await self.refresh()

        logger.debug(f"Loaded {len(items)} items from local cache")
        self._items = items
        self._transition(SyncState.SUCCESS)
        return list(items)

    async def refresh(self) -> List[Item]:
        """Fetch a snapshot, reconcile it and return the merged items.

        A call made while another refresh is running waits for that
        refresh's result instead of starting a second reconciliation.

        Raises:
            TransportError: If the fetch failed or the snapshot was rejected
            DecodingError: If the payload was malformed
            PersistenceError: If the reconciliation could not be committed
        """
        task = self._refresh_task
        if task is None:
            task = asyncio.ensure_future(self._run_refresh())
            self._refresh_task = task
            task.add_done_callback(self._refresh_finished)
        else:
            logger.debug("Joining in-flight refresh")

        items = await asyncio.shield(task)
        return list(items)

    def _refresh_finished(self, task: asyncio.Task):
        if self._refresh_task is task:
            self._refresh_task = None
        # Callers may all have been cancelled; the failure is logged by _run_refresh.
        if not task.cancelled():
            task.exception()

    async def _run_refresh(self) -> List[Item]:
        self._transition(SyncState.LOADING)
        try:
            items = await self._reconcile()
        except SyncError as e:
            logger.error(f"Refresh failed: {e}")
            self._transition(SyncState.FAILED, e)
            raise

        self._items = items
        self._last_refresh = datetime.now(timezone.utc)
        self._transition(SyncState.SUCCESS)
        return items

    async def _reconcile(self) -> List[Item]:
        try:
            snapshot = await self.remote.fetch_snapshot(self.config.snapshot_limit)
        except SyncError:
            raise
        except Exception as e:
            raise TransportError(f"Fetching from {self.remote.name} failed", e) from e

        snapshot = self._dedupe(snapshot)

        if not snapshot and self.config.empty_snapshot is EmptySnapshotPolicy.REJECT:
            raise EmptySnapshotError(f"{self.remote.name} returned an empty snapshot")

        result = await self.store.apply_snapshot(snapshot)
        logger.info(
            f"Reconciled {len(snapshot)} items "
            f"({result.inserted} inserted, {result.updated} updated)"
        )
        return await self._current_view()

    def _dedupe(self, snapshot: List[Item]) -> List[Item]:
        seen = set()
        unique = []
        for item in snapshot:
            if item.id in seen:
                logger.warning(f"Dropping duplicate item {item.id} from snapshot")
                continue
            seen.add(item.id)
            unique.append(item)
        return unique

    async def _current_view(self) -> List[Item]:
        """Stored items visible under the stale item policy, joined with favorites."""
        favorites = await self.registry.favorite_ids()
        stored = await self.store.all_items()

        if self.config.stale_items is StaleItemPolicy.HIDE:
            by_id = {item.id: item for item in stored}
            stored = [by_id[item_id] for item_id in await self.store.snapshot_item_ids()
                      if item_id in by_id]

        return sort_by_rank(item.with_favorite(item.id in favorites) for item in stored)

    async def toggle_favorite(self, item_id: str) -> bool:
        """Flip an item's favorite state and update the current items.

        A refresh in flight may have read the favorite marks before this
        toggle, so the flag is applied after it settles.

        Returns:
            The new favorite state
        """
        is_favorite = await self.registry.toggle(item_id)
        if self._refresh_task is not None:
            await asyncio.wait({self._refresh_task})
        self._items = [
            item.with_favorite(is_favorite) if item.id == item_id else item
            for item in self._items
        ]
        return is_favorite

    async def item(self, item_id: str) -> Optional[Item]:
        """Look up a stored item, stale or not, with its favorite state."""
        item = await self.store.item_by_id(item_id)
        if item is None:
            return None
        return item.with_favorite(await self.registry.is_favorite(item_id))

    async def favorite_items(self) -> List[Item]:
        """Stored items that are favorited, newest mark first.

        Marks whose item has no stored row are skipped.
        """
        ids = await self.registry.all_favorite_ids(most_recent_first=True)
        stored = {item.id: item for item in await self.store.all_items()}
        return [stored[item_id].with_favorite(True) for item_id in ids if item_id in stored]

    def search(self, text: str) -> List[Item]:
        """Filter current items by symbol or name.

        Exact (case-insensitive) symbol matches come first, followed by items
        whose name or symbol contains the text.
        """
        query = text.strip().lower()
        if not query:
            return self.current_items()

        exact = [item for item in self._items if item.symbol.lower() == query]
        exact_ids = {item.id for item in exact}
        partial = [
            item for item in self._items
            if item.id not in exact_ids
            and (query in item.name.lower() or query in item.symbol.lower())
        ]
        return exact + partial

    async def invalidate_cache(self) -> int:
        """Delete every cached item row; favorite marks are kept.

        Waits for an in-flight refresh to finish first.

        Returns:
            Number of item rows deleted
        """
        if self._refresh_task is not None:
            await asyncio.wait({self._refresh_task})

        deleted = await self.store.clear_items()
        self._items = []
        self._last_refresh = None
        self._transition(SyncState.IDLE)
        logger.info(f"Invalidated cache ({deleted} items removed)")
        return deleted
