"""Builds and owns the long-lived services of a monitor process."""
import logging
import sqlite3
from typing import Optional

from goofish_monitor.auth.cache import CredentialCache
from goofish_monitor.auth.fetcher import CredentialFetcher, HttpCookieFetcher
from goofish_monitor.config import config
from goofish_monitor.errors import StorageInitError
from goofish_monitor.fetch.client import SearchClient
from goofish_monitor.jobs.metrics_exporter import MetricsExporter
from goofish_monitor.jobs.supervisor import SessionSupervisor
from goofish_monitor.notify.sink import LoggingNotificationSink, NotificationSink
from goofish_monitor.notify.telegram import TelegramNotificationSink
from goofish_monitor.store.cookie_store import CookieStore
from goofish_monitor.store.seen_items import SeenItemsDB
from goofish_monitor.store.user_data import UserDataStore

logger = logging.getLogger(__name__)


def default_sink() -> NotificationSink:
    if config.TELEGRAM_BOT_TOKEN:
        return TelegramNotificationSink()
    logger.warning("TELEGRAM_BOT_TOKEN not set, notifications go to the log only")
    return LoggingNotificationSink()


class MonitorRuntime:
    """Credential cache, search client, sink and supervisor, wired once."""

    def __init__(
        self,
        store: Optional[CookieStore] = None,
        fetcher: Optional[CredentialFetcher] = None,
        sink: Optional[NotificationSink] = None,
        client: Optional[SearchClient] = None,
        seen_items: Optional[SeenItemsDB] = None,
        user_data: Optional[UserDataStore] = None,
        exporter: Optional[MetricsExporter] = None,
    ):
        self.store = store or CookieStore()
        self.fetcher = fetcher or HttpCookieFetcher()
        self.cache = CredentialCache(self.fetcher, self.store)
        self.sink = sink or default_sink()
        self.client = client or SearchClient()
        self.seen_items = seen_items or SeenItemsDB()
        self.user_data = user_data or UserDataStore()
        self.supervisor = SessionSupervisor(
            self.cache,
            self.client,
            self.sink,
            seen_items=self.seen_items,
            user_data=self.user_data,
            exporter=exporter or MetricsExporter(),
        )

    async def start(self, background: bool = True) -> None:
        """Open storage and the sink. Storage failures are fatal."""
        await self.store.initialize()
        try:
            await self.seen_items.initialize()
        except (sqlite3.Error, OSError) as e:
            raise StorageInitError(f"Cannot open seen items database: {e}") from e
        try:
            await self.user_data.initialize()
        except (sqlite3.Error, OSError) as e:
            raise StorageInitError(f"Cannot open user data database: {e}") from e

        if not self.sink.is_available() and not await self.sink.reinitialize():
            logger.warning("Notification sink unavailable at startup, will retry from the health timer")

        if background:
            self.supervisor.start_background()
        logger.info("Monitor runtime started")

    async def close(self) -> None:
        await self.supervisor.shutdown()
        await self.client.aclose()
        await self.sink.aclose()
        logger.info("Monitor runtime closed")
