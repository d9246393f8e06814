"""Supervisor of all user sessions: one worker task per started user."""
import asyncio
import logging
import time
from typing import Any, Iterable, Optional

import aiosqlite

from goofish_monitor.auth.cache import CredentialCache
from goofish_monitor.config import config
from goofish_monitor.errors import SessionConfigError
from goofish_monitor.fetch.client import SearchClient
from goofish_monitor.jobs.metrics_exporter import MetricsExporter
from goofish_monitor.jobs.models import UserSettings
from goofish_monitor.jobs.scheduler import PeriodicTask, StopToken
from goofish_monitor.jobs.user_session import UserSession, format_uptime
from goofish_monitor.jobs.worker import SessionWorker
from goofish_monitor.notify.sink import NotificationSink
from goofish_monitor.store.seen_items import SeenItemsDB
from goofish_monitor.store.user_data import UserDataStore

logger = logging.getLogger(__name__)

SEEN_ITEMS_CLEANUP_SECONDS = 24 * 3600
SEEN_ITEMS_RETENTION_DAYS = 7


class SessionSupervisor:
    """Starts, stops and reports on user sessions.

    Sessions outlive their workers: stop/pause/resume keep counters and
    history, and only `reset` clears them. With a `UserDataStore`, queries
    and settings also outlive the process.
    """

    def __init__(
        self,
        cache: CredentialCache,
        client: SearchClient,
        sink: NotificationSink,
        seen_items: Optional[SeenItemsDB] = None,
        user_data: Optional[UserDataStore] = None,
        exporter: Optional[MetricsExporter] = None,
        domain: Optional[str] = None,
        grace_seconds: Optional[float] = None,
        health_interval: Optional[float] = None,
        worker_options: Optional[dict[str, Any]] = None,
    ):
        self.cache = cache
        self.client = client
        self.sink = sink
        self.seen_items = seen_items
        self.user_data = user_data
        self.exporter = exporter
        self.domain = domain or config.API_DOMAIN
        self.grace_seconds = config.SHUTDOWN_GRACE_SECONDS if grace_seconds is None else grace_seconds
        self.worker_options = worker_options or {}
        self.started_at = time.time()

        self.sessions: dict[int, UserSession] = {}
        self._workers: dict[int, asyncio.Task] = {}
        self._tokens: dict[int, StopToken] = {}

        self._health = PeriodicTask(
            "health",
            config.HEALTH_INTERVAL_SECONDS if health_interval is None else health_interval,
            self.health_check,
        )
        self._cleanup: Optional[PeriodicTask] = None
        if seen_items is not None:
            self._cleanup = PeriodicTask(
                "seen-items-cleanup", SEEN_ITEMS_CLEANUP_SECONDS, self._cleanup_seen_items
            )

    # Commands

    def is_running(self, user_id: int) -> bool:
        """Whether the user has a live worker that has not been told to stop."""
        task = self._workers.get(user_id)
        token = self._tokens.get(user_id)
        return task is not None and not task.done() and token is not None and not token.stopped

    def active_users(self) -> set[int]:
        return {user_id for user_id in self._workers if self.is_running(user_id)}

    async def start(
        self,
        user_id: int,
        queries: Optional[Iterable[str]] = None,
        settings: Optional[UserSettings] = None,
    ) -> bool:
        """Start monitoring for `user_id`. Returns False if already running.

        Without `queries`, the in-memory session or the stored queries are used.
        Raises SessionConfigError when there is no non-empty query list to use.
        """
        if self.is_running(user_id):
            logger.warning(f"Session for user {user_id} is already running")
            return False

        session = self.sessions.get(user_id)
        if session is None:
            if queries is None or settings is None:
                queries, settings = await self._restore(user_id, queries, settings)
            session = UserSession(user_id, queries or [], settings)
            self.sessions[user_id] = session
        else:
            if queries is not None and not session.update_queries(queries):
                raise SessionConfigError(f"Session for user {user_id} needs at least one query")
            if settings is not None:
                session.settings = settings
        await self._persist(session)

        if session.running:
            # Worker ended without a stop command
            session.stop()
        session.start()

        token = StopToken()
        worker = SessionWorker(
            session,
            self.cache,
            self.client,
            self.sink,
            seen_items=self.seen_items,
            token=token,
            domain=self.domain,
            **self.worker_options,
        )
        task = asyncio.create_task(worker.run(), name=f"session-{user_id}")
        task.add_done_callback(lambda t, uid=user_id: self._on_worker_done(uid, t))
        self._tokens[user_id] = token
        self._workers[user_id] = task

        logger.info(f"Started session for user {user_id} with {len(session.queries)} queries")
        await self.sink.send_status(
            user_id,
            "Monitoring started",
            f"{len(session.queries)} queries, checking every {session.settings.check_interval}s",
        )
        return True

    async def stop(self, user_id: int, notify: bool = True) -> bool:
        """Signal the worker to exit at its next checkpoint."""
        session = self.sessions.get(user_id)
        if session is None or not session.running:
            return False
        token = self._tokens.get(user_id)
        if token is not None:
            token.stop()
        session.stop()
        logger.info(f"Stopped session for user {user_id}")
        if notify:
            await self.sink.send_status(
                user_id, "Monitoring stopped", f"Listings found: {session.total_products_found}"
            )
        return True

    async def pause(self, user_id: int) -> bool:
        session = self.sessions.get(user_id)
        if session is None or not self.is_running(user_id):
            return False
        session.pause()
        logger.info(f"Paused session for user {user_id}")
        await self.sink.send_status(user_id, "Monitoring paused", "")
        return True

    async def resume(self, user_id: int) -> bool:
        session = self.sessions.get(user_id)
        if session is None or not self.is_running(user_id):
            return False
        session.resume()
        logger.info(f"Resumed session for user {user_id}")
        await self.sink.send_status(user_id, "Monitoring resumed", "")
        return True

    def reset(self, user_id: int) -> bool:
        session = self.sessions.get(user_id)
        if session is None:
            return False
        session.reset_statistics()
        return True

    async def update_queries(self, user_id: int, queries: Iterable[str]) -> bool:
        session = self.sessions.get(user_id)
        if session is None or not session.update_queries(queries):
            return False
        await self._persist(session)
        return True

    async def forget_seen(self, user_id: int) -> int:
        """Drop the delivered-listings history so everything is notified again."""
        if self.seen_items is None:
            return 0
        removed = await self.seen_items.forget_user(user_id)
        logger.info(f"Forgot {removed} delivered listings for user {user_id}")
        return removed

    async def delete_user(self, user_id: int) -> bool:
        """Stop the session and remove everything kept about the user."""
        await self.stop(user_id, notify=False)
        known = self.sessions.pop(user_id, None) is not None
        if self.user_data is not None:
            known = await self.user_data.delete(user_id) or known
        await self.forget_seen(user_id)
        if known:
            logger.info(f"Deleted all data of user {user_id}")
        return known

    async def _restore(
        self,
        user_id: int,
        queries: Optional[Iterable[str]],
        settings: Optional[UserSettings],
    ) -> tuple[Optional[Iterable[str]], Optional[UserSettings]]:
        if self.user_data is None:
            return queries, settings
        saved = await self.user_data.load(user_id)
        if saved is None:
            return queries, settings
        saved_queries, saved_settings = saved
        logger.info(f"Restored {len(saved_queries)} saved queries for user {user_id}")
        if queries is None:
            queries = saved_queries
        if settings is None:
            settings = UserSettings(**saved_settings)
        return queries, settings

    async def _persist(self, session: UserSession) -> None:
        if self.user_data is None:
            return
        try:
            await self.user_data.save(
                session.user_id, session.queries, session.settings.model_dump()
            )
        except (aiosqlite.Error, OSError) as e:
            logger.error(f"Failed to save data of user {session.user_id}: {e}")

    async def refresh_credentials(
        self, domain: Optional[str] = None, force_interactive: bool = False
    ) -> bool:
        """Force a credential refresh (the API domain by default) and tell the admin."""
        domain = domain or self.domain
        logger.info(f"Refreshing credentials for {domain} (interactive={force_interactive})")
        ok = await self.cache.refresh(domain, force_interactive=force_interactive)
        if ok:
            await self.sink.send_admin(f"Credentials refreshed for {domain}")
        else:
            logger.error(f"Credential refresh for {domain} failed")
            await self.sink.send_admin(f"Credential refresh for {domain} failed")
        return ok

    # Reporting

    def get_user_status(self, user_id: int) -> Optional[dict[str, Any]]:
        session = self.sessions.get(user_id)
        if session is None:
            return None
        status = session.detailed_status()
        status["worker_alive"] = self.is_running(user_id)
        status["efficiency"] = session.efficiency_stats()
        status["recent_products"] = list(session.recent_products)[:10]
        return status

    def get_all_statuses(self) -> dict[int, dict[str, Any]]:
        return {user_id: self.get_user_status(user_id) for user_id in self.sessions}

    def global_statistics(self) -> dict[str, Any]:
        cache_stats = self.cache.stats()
        uptime = time.time() - self.started_at
        return {
            "total_users": len(self.sessions),
            "active_users": len(self.active_users()),
            "total_products_found": sum(s.total_products_found for s in self.sessions.values()),
            "total_requests_made": sum(s.requests_made for s in self.sessions.values()),
            "total_errors": sum(s.errors_count for s in self.sessions.values()),
            "uptime_seconds": round(uptime, 1),
            "uptime": format_uptime(uptime),
            "start_time": self.started_at,
            "cookie_cache_domains": cache_stats["total_domains"],
            "cookie_cache_size": cache_stats["total_cookies"],
            "credential_fetches": cache_stats["fetch_count"],
            "notifications_available": self.sink.is_available(),
        }

    # Timers

    def start_background(self) -> None:
        self._health.start()
        if self._cleanup is not None:
            self._cleanup.start()

    async def health_check(self) -> None:
        """Log and export statistics, keep credentials warm, revive the sink."""
        stats = self.global_statistics()
        logger.info(
            f"Statistics: {stats['active_users']} active users, "
            f"{stats['total_products_found']} listings found, "
            f"{stats['total_errors']} errors, "
            f"{stats['cookie_cache_domains']} credential domains cached"
        )
        if self.seen_items is not None:
            stats["seen_items"] = await self.seen_items.get_stats()
        if self.exporter is not None:
            await self.exporter.export_metrics(stats)

        await self.cache.get(self.domain)

        if not self.sink.is_available():
            logger.warning("Notification sink unavailable, reinitializing")
            if await self.sink.reinitialize():
                logger.info("Notification sink reinitialized")
            else:
                logger.error("Notification sink reinitialization failed")

    async def _cleanup_seen_items(self) -> None:
        await self.seen_items.cleanup(SEEN_ITEMS_RETENTION_DAYS)

    # Shutdown

    def _on_worker_done(self, user_id: int, task: asyncio.Task) -> None:
        if self._workers.get(user_id) is task:
            del self._workers[user_id]
            self._tokens.pop(user_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Worker for user {user_id} crashed: {exc}", exc_info=exc)
            session = self.sessions.get(user_id)
            if session is not None and session.running:
                session.record_error(str(exc))
                session.stop()

    async def shutdown(self) -> None:
        """Stop every worker, wait up to the grace period, then cancel stragglers."""
        logger.info("Shutting down session supervisor...")
        await self._health.stop()
        if self._cleanup is not None:
            await self._cleanup.stop()

        tasks = [task for task in self._workers.values() if not task.done()]
        for user_id in list(self._workers):
            await self.stop(user_id, notify=False)

        if not tasks:
            logger.info("Session supervisor shutdown complete")
            return

        _, pending = await asyncio.wait(tasks, timeout=self.grace_seconds)
        if pending:
            logger.warning(f"{len(pending)} workers did not stop within {self.grace_seconds}s, cancelling")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Session supervisor shutdown complete")
