"""SQLite persistence for mirrored items and favorite marks."""

import aiosqlite
from pathlib import Path
from typing import List, Optional, Sequence, Union, Any, Tuple, Set
from datetime import datetime, timezone
from decimal import Decimal
import logging

from .errors import PersistenceError
from .models import Item, FavoriteMark, DECIMAL_FIELDS, PERCENT_FIELDS, DATE_FIELDS
from .store import LocalStore, ReconcileResult

logger = logging.getLogger(__name__)

# Snapshot columns of the items table, in binding order
ITEM_COLUMNS = (
    'symbol', 'name', 'image_url', 'market_cap_rank',
    *DECIMAL_FIELDS, *PERCENT_FIELDS, *DATE_FIELDS,
)


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    """Store timestamps as fixed-width UTC ISO strings so they sort as text."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


class DatabaseManager(LocalStore):
    """Manages SQLite database operations for the local mirror."""

    def __init__(self, db_path: Union[str, Path] = "market_mirror.db"):
        """Initialize database manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._initialized = False

    def _connect(self) -> aiosqlite.Connection:
        # Autocommit mode; transactions are opened explicitly with BEGIN
        return aiosqlite.connect(self.db_path, isolation_level=None)

    async def initialize(self):
        """Initialize database and create tables."""
        if self._initialized:
            return

        try:
            # Ensure database directory exists
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with self._connect() as db:
                await db.execute("PRAGMA journal_mode=WAL")
                await self._create_tables(db)
                await self._create_indexes(db)
        except Exception as e:
            logger.error(f"Failed to initialize database at {self.db_path}: {e}")
            raise PersistenceError(f"Failed to initialize database at {self.db_path}", e) from e

        self._initialized = True
        logger.info(f"Database initialized at {self.db_path}")

    async def _create_tables(self, db: aiosqlite.Connection):
        """Create database tables."""

        # One row per item id; first_seen_at is local metadata
        await db.execute("""
            CREATE TABLE IF NOT EXISTS items (
                id TEXT PRIMARY KEY,
                symbol TEXT NOT NULL,
                name TEXT NOT NULL,
                image_url TEXT,
                market_cap_rank INTEGER,
                current_price TEXT,
                market_cap TEXT,
                total_volume TEXT,
                high_24h TEXT,
                low_24h TEXT,
                price_change_24h TEXT,
                market_cap_change_24h TEXT,
                total_supply TEXT,
                max_supply TEXT,
                ath TEXT,
                atl TEXT,
                market_cap_change_percentage_24h REAL,
                ath_change_percentage REAL,
                atl_change_percentage REAL,
                ath_date TEXT,
                atl_date TEXT,
                last_updated TEXT,
                first_seen_at TEXT NOT NULL
            )
        """)

        # Favorite marks are not tied to item rows
        await db.execute("""
            CREATE TABLE IF NOT EXISTS favorite_marks (
                item_id TEXT PRIMARY KEY,
                date_added TEXT NOT NULL
            )
        """)

        # Membership of the last reconciled snapshot
        await db.execute("""
            CREATE TABLE IF NOT EXISTS snapshot_members (
                item_id TEXT PRIMARY KEY,
                position INTEGER NOT NULL
            )
        """)

    async def _create_indexes(self, db: aiosqlite.Connection):
        """Create database indexes for performance."""
        indexes = [
            "CREATE INDEX IF NOT EXISTS idx_items_rank ON items(market_cap_rank)",
            "CREATE INDEX IF NOT EXISTS idx_favorite_marks_date_added ON favorite_marks(date_added)",
            "CREATE INDEX IF NOT EXISTS idx_snapshot_members_position ON snapshot_members(position)",
        ]

        for index_sql in indexes:
            await db.execute(index_sql)

    def _item_params(self, item: Item) -> Tuple[Any, ...]:
        """Bind values for ITEM_COLUMNS."""
        values: List[Any] = [item.symbol, item.name, item.image_url, item.rank]
        for name in DECIMAL_FIELDS:
            value = getattr(item, name)
            values.append(str(value) if value is not None else None)
        for name in PERCENT_FIELDS:
            values.append(getattr(item, name))
        for name in DATE_FIELDS:
            values.append(_timestamp(getattr(item, name)))
        return tuple(values)

    def _row_to_item(self, row: aiosqlite.Row) -> Item:
        """Convert database row to Item instance."""
        values = {
            'id': row['id'],
            'symbol': row['symbol'],
            'name': row['name'],
            'image_url': row['image_url'],
            'rank': row['market_cap_rank'],
        }
        for name in DECIMAL_FIELDS:
            values[name] = Decimal(row[name]) if row[name] is not None else None
        for name in PERCENT_FIELDS:
            values[name] = row[name]
        for name in DATE_FIELDS:
            values[name] = datetime.fromisoformat(row[name]) if row[name] else None
        return Item(**values)

    async def _insert_item(self, db: aiosqlite.Connection, item: Item, first_seen_at: str):
        columns = ", ".join(ITEM_COLUMNS)
        placeholders = ", ".join("?" for _ in ITEM_COLUMNS)
        await db.execute(
            f"INSERT INTO items (id, {columns}, first_seen_at) VALUES (?, {placeholders}, ?)",
            (item.id, *self._item_params(item), first_seen_at)
        )

    async def _update_item(self, db: aiosqlite.Connection, item: Item):
        # Snapshot fields only; id and first_seen_at stay as they are
        assignments = ", ".join(f"{column} = ?" for column in ITEM_COLUMNS)
        await db.execute(
            f"UPDATE items SET {assignments} WHERE id = ?",
            (*self._item_params(item), item.id)
        )

    async def _existing_ids(self, db: aiosqlite.Connection) -> Set[str]:
        async with db.execute("SELECT id FROM items") as cursor:
            return {row[0] for row in await cursor.fetchall()}

    async def _transaction(self, description: str, operation):
        """Run ``operation(db)`` inside one write transaction.

        Either everything the operation wrote is committed or nothing is,
        including when the caller is cancelled mid-way.
        """
        try:
            async with self._connect() as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    result = await operation(db)
                    await db.execute("COMMIT")
                except BaseException:
                    await db.execute("ROLLBACK")
                    raise
                return result
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Failed to {description}: {e}")
            raise PersistenceError(f"Failed to {description}", e) from e

    async def _fetch_all(self, description: str, query: str,
                         params: Sequence[Any] = ()) -> List[aiosqlite.Row]:
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(query, params) as cursor:
                    return list(await cursor.fetchall())
        except Exception as e:
            logger.error(f"Failed to {description}: {e}")
            raise PersistenceError(f"Failed to {description}", e) from e

    async def upsert_item(self, item: Item) -> None:
        """Insert an item or update its existing row in place.

        Args:
            item: Item to save
        """
        async def write(db):
            if item.id in await self._existing_ids(db):
                await self._update_item(db, item)
            else:
                await self._insert_item(db, item, _timestamp(datetime.now(timezone.utc)))

        await self._transaction(f"save item {item.id}", write)

    async def apply_snapshot(self, items: Sequence[Item]) -> ReconcileResult:
        """Reconcile a remote snapshot into the items table.

        Existing rows are updated in place, new ids are inserted and rows
        missing from the snapshot are left alone. The snapshot membership is
        replaced in the same transaction.

        Args:
            items: Snapshot items, without duplicate ids

        Returns:
            Counts of inserted and updated rows
        """
        first_seen_at = _timestamp(datetime.now(timezone.utc))

        async def reconcile(db):
            result = ReconcileResult()
            existing = await self._existing_ids(db)

            for item in items:
                if item.id in existing:
                    await self._update_item(db, item)
                    result.updated += 1
                else:
                    await self._insert_item(db, item, first_seen_at)
                    existing.add(item.id)
                    result.inserted += 1

            await db.execute("DELETE FROM snapshot_members")
            await db.executemany(
                "INSERT INTO snapshot_members (item_id, position) VALUES (?, ?)",
                [(item.id, position) for position, item in enumerate(items)]
            )
            return result

        result = await self._transaction("apply snapshot", reconcile)
        logger.debug(f"Applied snapshot: {result.inserted} inserted, {result.updated} updated")
        return result

    async def all_items(self) -> List[Item]:
        """Get every stored item."""
        rows = await self._fetch_all("load items", "SELECT * FROM items ORDER BY id")
        return [self._row_to_item(row) for row in rows]

    async def item_by_id(self, item_id: str) -> Optional[Item]:
        """Get a stored item by id.

        Args:
            item_id: Item identifier

        Returns:
            Item instance or None if not found
        """
        rows = await self._fetch_all(f"load item {item_id}",
                                     "SELECT * FROM items WHERE id = ?", (item_id,))
        return self._row_to_item(rows[0]) if rows else None

    async def count_items(self) -> int:
        rows = await self._fetch_all("count items", "SELECT COUNT(*) AS total FROM items")
        return rows[0]['total']

    async def snapshot_item_ids(self) -> List[str]:
        rows = await self._fetch_all(
            "load snapshot membership",
            "SELECT item_id FROM snapshot_members ORDER BY position"
        )
        return [row['item_id'] for row in rows]

    async def clear_items(self) -> int:
        """Delete all item rows and the snapshot membership.

        Favorite marks are kept.

        Returns:
            Number of item rows deleted
        """
        async def clear(db):
            cursor = await db.execute("DELETE FROM items")
            deleted = cursor.rowcount
            await db.execute("DELETE FROM snapshot_members")
            return deleted

        deleted = await self._transaction("clear items", clear)
        logger.info(f"Cleared {deleted} cached items")
        return deleted

    async def upsert_favorite(self, item_id: str, date_added: datetime) -> None:
        async def write(db):
            await db.execute("""
                INSERT INTO favorite_marks (item_id, date_added) VALUES (?, ?)
                ON CONFLICT(item_id) DO UPDATE SET date_added = excluded.date_added
            """, (item_id, _timestamp(date_added)))

        await self._transaction(f"save favorite {item_id}", write)

    async def delete_favorite(self, item_id: str) -> bool:
        async def delete(db):
            cursor = await db.execute("DELETE FROM favorite_marks WHERE item_id = ?", (item_id,))
            return cursor.rowcount > 0

        return await self._transaction(f"delete favorite {item_id}", delete)

    async def get_favorite(self, item_id: str) -> Optional[FavoriteMark]:
        rows = await self._fetch_all(
            f"load favorite {item_id}",
            "SELECT item_id, date_added FROM favorite_marks WHERE item_id = ?", (item_id,)
        )
        return self._row_to_favorite(rows[0]) if rows else None

    async def all_favorites(self) -> List[FavoriteMark]:
        """Get every favorite mark, most recently added first."""
        rows = await self._fetch_all(
            "load favorites",
            "SELECT item_id, date_added FROM favorite_marks ORDER BY date_added DESC, item_id DESC"
        )
        return [self._row_to_favorite(row) for row in rows]

    def _row_to_favorite(self, row: aiosqlite.Row) -> FavoriteMark:
        return FavoriteMark(item_id=row['item_id'], date_added=datetime.fromisoformat(row['date_added']))

    async def close(self):
        """Close database connections."""
        # Connections are opened per operation
        self._initialized = False
        logger.info("Database connections closed")
