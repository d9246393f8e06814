"""Notification sink interface and a log-only implementation."""
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Receives found-item, error and status events for users."""

    async def send_message(self, user_id: int, text: str) -> bool: ...

    async def send_products_found(self, user_id: int, count: int, query: str) -> bool: ...

    async def send_error(self, user_id: int, message: str) -> bool: ...

    async def send_status(self, user_id: int, status: str, details: str) -> bool: ...

    async def send_image(self, user_id: int, url: str, caption: str) -> bool: ...

    async def send_admin(self, message: str) -> bool: ...

    def is_available(self) -> bool: ...

    async def reinitialize(self) -> bool: ...

    async def aclose(self) -> None: ...


class LoggingNotificationSink:
    """Writes every event to the log. Used when no chat transport is configured."""

    def __init__(self):
        self.sent = 0

    async def send_message(self, user_id: int, text: str) -> bool:
        self.sent += 1
        logger.info(f"[user {user_id}] {text}")
        return True

    async def send_products_found(self, user_id: int, count: int, query: str) -> bool:
        return await self.send_message(user_id, f"Found {count} listings for \"{query}\"")

    async def send_error(self, user_id: int, message: str) -> bool:
        self.sent += 1
        logger.error(f"[user {user_id}] {message}")
        return True

    async def send_status(self, user_id: int, status: str, details: str) -> bool:
        return await self.send_message(user_id, f"{status}: {details}" if details else status)

    async def send_image(self, user_id: int, url: str, caption: str) -> bool:
        return await self.send_message(user_id, f"{caption} ({url})")

    async def send_admin(self, message: str) -> bool:
        self.sent += 1
        logger.info(f"[admin] {message}")
        return True

    def is_available(self) -> bool:
        return True

    async def reinitialize(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass
