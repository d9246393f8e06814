"""State and statistics of one user's monitoring session."""
import logging
import time
from collections import deque
from typing import Any, Callable, Iterable, Optional

from goofish_monitor.errors import SessionConfigError, SessionStateError
from goofish_monitor.jobs.models import SessionStatus, UserSettings

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100

_TRANSITIONS = {
    "start": ({SessionStatus.STOPPED}, SessionStatus.RUNNING),
    "stop": ({SessionStatus.RUNNING, SessionStatus.PAUSED}, SessionStatus.STOPPED),
    "pause": ({SessionStatus.RUNNING}, SessionStatus.PAUSED),
    "resume": ({SessionStatus.PAUSED}, SessionStatus.RUNNING),
}


def format_uptime(seconds: float) -> str:
    """Render a duration as `2d 3h 4m`, `3h 4m 5s`, `4m 5s` or `5s`."""
    seconds = int(max(seconds, 0))
    minutes, secs = divmod(seconds, 60)
    hours, mins = divmod(minutes, 60)
    days, hrs = divmod(hours, 24)
    if days:
        return f"{days}d {hrs}h {mins}m"
    if hours:
        return f"{hours}h {mins}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class UserSession:
    """Queries, settings, counters and history of one user.

    `running` and `paused` are read from the single `status` field, which
    only the command methods change.
    """

    def __init__(
        self,
        user_id: int,
        queries: Iterable[str],
        settings: Optional[UserSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        queries = [q.strip() for q in queries if q and q.strip()]
        if not queries:
            raise SessionConfigError(f"Session for user {user_id} needs at least one query")
        self.user_id = user_id
        self.queries: list[str] = queries
        self.settings = settings or UserSettings()
        self._clock = clock
        self.status = SessionStatus.STOPPED

        self.total_products_found = 0
        self.requests_made = 0
        self.errors_count = 0
        self.last_error: Optional[str] = None
        self.recent_products: deque[dict[str, Any]] = deque(maxlen=HISTORY_LIMIT)

        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.last_iteration_time: Optional[float] = None
        self.last_product_found_time: Optional[float] = None

    @property
    def running(self) -> bool:
        return self.status in (SessionStatus.RUNNING, SessionStatus.PAUSED)

    @property
    def paused(self) -> bool:
        return self.status is SessionStatus.PAUSED

    @property
    def active(self) -> bool:
        return self.status is SessionStatus.RUNNING

    def _transition(self, command: str) -> None:
        allowed, target = _TRANSITIONS[command]
        if self.status not in allowed:
            raise SessionStateError(
                f"Cannot {command} session of user {self.user_id} while {self.status.value}"
            )
        logger.debug(f"User {self.user_id}: {self.status.value} -> {target.value}")
        self.status = target

    def start(self) -> None:
        self._transition("start")
        self.start_time = self._clock()
        self.end_time = None

    def stop(self) -> None:
        self._transition("stop")
        self.end_time = self._clock()

    def pause(self) -> None:
        self._transition("pause")

    def resume(self) -> None:
        self._transition("resume")

    def add_products_found(self, count: int) -> None:
        self.total_products_found += count
        self.last_product_found_time = self._clock()

    def add_recent_product(self, product: dict[str, Any]) -> None:
        """Insert at the head; the oldest entry falls off past the limit."""
        self.recent_products.appendleft(product)

    def record_request(self) -> None:
        self.requests_made += 1

    def record_error(self, message: str) -> None:
        self.errors_count += 1
        self.last_error = message

    def mark_iteration(self) -> None:
        self.last_iteration_time = self._clock()

    def update_queries(self, queries: Iterable[str]) -> bool:
        cleaned = [q.strip() for q in queries if q and q.strip()]
        if not cleaned:
            logger.warning(f"Attempted to set empty queries for user {self.user_id}")
            return False
        self.queries = cleaned
        logger.debug(f"Queries updated for user {self.user_id}, now has {len(cleaned)} queries")
        return True

    def reset_statistics(self) -> None:
        self.total_products_found = 0
        self.requests_made = 0
        self.errors_count = 0
        self.last_error = None
        self.last_product_found_time = None
        self.last_iteration_time = None
        self.recent_products.clear()
        logger.info(f"Statistics reset for user {self.user_id}")

    def detailed_status(self) -> dict[str, Any]:
        """Snapshot for status commands and the control API."""
        status = {
            "user_id": self.user_id,
            "running": self.running,
            "paused": self.paused,
            "status": self.status.value,
            "queries_count": len(self.queries),
            "total_products_found": self.total_products_found,
            "requests_made": self.requests_made,
            "errors_count": self.errors_count,
            "last_error": self.last_error,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "last_iteration_time": self.last_iteration_time,
            "last_product_found_time": self.last_product_found_time,
            "settings": self.settings.model_dump(),
            "sample_queries": self.queries[:5],
        }
        if self.start_time is not None:
            until = self._clock() if self.end_time is None else self.end_time
            status["uptime"] = format_uptime(until - self.start_time)
        return status

    def efficiency_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {}
        if self.requests_made > 0:
            error_rate = self.errors_count / self.requests_made
            stats["products_per_request"] = round(self.total_products_found / self.requests_made, 2)
            stats["error_rate"] = round(error_rate * 100, 2)
            stats["success_rate"] = round((1 - error_rate) * 100, 2)
        if self.start_time is not None and self.last_iteration_time is not None:
            elapsed_ms = (self.last_iteration_time - self.start_time) * 1000
            stats["avg_iteration_time_ms"] = int(elapsed_ms / max(self.requests_made, 1))
        return stats

    def __repr__(self) -> str:
        return (
            f"UserSession(user_id={self.user_id}, status={self.status.value}, "
            f"queries={len(self.queries)}, found={self.total_products_found})"
        )
