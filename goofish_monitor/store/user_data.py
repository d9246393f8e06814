"""SQLite record of each user's queries and settings, so sessions survive restarts."""
import aiosqlite
import logging
import orjson
from pathlib import Path
from typing import Any, Iterable, Optional

from goofish_monitor.config import USER_DATA_DB

logger = logging.getLogger(__name__)


class UserDataStore:
    """Last queries and settings each user started or updated a session with."""

    def __init__(self, db_path: Path = USER_DATA_DB):
        self.db_path = db_path

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS user_sessions (
                    user_id INTEGER PRIMARY KEY,
                    queries TEXT NOT NULL,
                    settings TEXT NOT NULL,
                    updated_at TIMESTAMP
                )
                """
            )
            await db.commit()
            logger.info(f"User data database initialized at {self.db_path}")

    async def save(self, user_id: int, queries: Iterable[str], settings: dict[str, Any]) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO user_sessions (user_id, queries, settings, updated_at)
                VALUES (?, ?, ?, datetime('now'))
                ON CONFLICT(user_id) DO UPDATE SET
                    queries = excluded.queries,
                    settings = excluded.settings,
                    updated_at = excluded.updated_at
                """,
                (user_id, orjson.dumps(list(queries)).decode(), orjson.dumps(settings).decode()),
            )
            await db.commit()
        logger.debug(f"Saved queries and settings for user {user_id}")

    async def load(self, user_id: int) -> Optional[tuple[list[str], dict[str, Any]]]:
        """(queries, settings) last saved for `user_id`, or None."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT queries, settings FROM user_sessions WHERE user_id = ?", (user_id,)
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        try:
            return orjson.loads(row[0]), orjson.loads(row[1])
        except orjson.JSONDecodeError as e:
            logger.error(f"Stored data for user {user_id} is unreadable: {e}")
            return None

    async def delete(self, user_id: int) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM user_sessions WHERE user_id = ?", (user_id,))
            await db.commit()
            return cursor.rowcount > 0
