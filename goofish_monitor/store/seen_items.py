"""SQLite record of listings already delivered to each user."""
import aiosqlite
import logging
from pathlib import Path
from typing import Iterable

from goofish_monitor.config import SEEN_ITEMS_DB

logger = logging.getLogger(__name__)


class SeenItemsDB:
    """Tracks (user, item) pairs so "notify new only" skips repeats."""

    def __init__(self, db_path: Path = SEEN_ITEMS_DB):
        self.db_path = db_path

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS seen_items (
                    user_id INTEGER NOT NULL,
                    item_id TEXT NOT NULL,
                    query TEXT,
                    seen_at TIMESTAMP,
                    PRIMARY KEY (user_id, item_id)
                )
                """
            )
            await db.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_seen_at ON seen_items(seen_at)
                """
            )
            await db.commit()
            logger.info(f"Seen items database initialized at {self.db_path}")

    async def filter_new(self, user_id: int, item_ids: Iterable[str]) -> list[str]:
        """Return the ids in `item_ids` not yet delivered to `user_id`, in order."""
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"SELECT item_id FROM seen_items WHERE user_id = ? AND item_id IN ({placeholders})",
                (user_id, *ids),
            )
            seen = {row[0] for row in await cursor.fetchall()}
        return [item_id for item_id in ids if item_id not in seen]

    async def mark_seen(self, user_id: int, items: Iterable[tuple[str, str]]) -> None:
        """Record (item_id, query) pairs as delivered."""
        rows = [(user_id, item_id, query) for item_id, query in items]
        if not rows:
            return
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(
                """
                INSERT OR IGNORE INTO seen_items (user_id, item_id, query, seen_at)
                VALUES (?, ?, ?, datetime('now'))
                """,
                rows,
            )
            await db.commit()

    async def forget_user(self, user_id: int) -> int:
        """Drop the history of `user_id`. Returns the number of rows removed."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM seen_items WHERE user_id = ?", (user_id,))
            await db.commit()
            return cursor.rowcount

    async def cleanup(self, older_than_days: int = 7) -> int:
        """Delete entries older than N days."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM seen_items WHERE seen_at < datetime('now', ?)",
                (f"-{int(older_than_days)} days",),
            )
            await db.commit()
            logger.info(f"Removed {cursor.rowcount} seen items older than {older_than_days} days")
            return cursor.rowcount

    async def get_stats(self) -> dict:
        """Number of remembered items per user."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                SELECT user_id, COUNT(*) FROM seen_items
                GROUP BY user_id
                """
            )
            return {row[0]: row[1] for row in await cursor.fetchall()}
