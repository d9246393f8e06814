"""Telegram Bot API notification sink."""
import html
import logging
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from goofish_monitor.config import config
from goofish_monitor.parse.redact import redact_string

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org/bot{token}/{method}"
MAX_MESSAGE_LENGTH = 4096
MAX_CAPTION_LENGTH = 1024


class TelegramNotificationSink:
    """Sends events to users' Telegram chats through the Bot API."""

    def __init__(self, token: Optional[str] = None, admin_id: Optional[int] = None):
        self.token = token or config.TELEGRAM_BOT_TOKEN
        self.admin_id = admin_id if admin_id is not None else config.TELEGRAM_ADMIN_ID
        self.client: Optional[httpx.AsyncClient] = None
        self._available = False

    async def initialize(self) -> bool:
        """Open the HTTP client and check the token with getMe."""
        if not self.token:
            logger.error("TELEGRAM_BOT_TOKEN is not set, Telegram notifications disabled")
            self._available = False
            return False
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=config.TIMEOUT)
        try:
            result = await self._call("getMe", {})
        except (httpx.HTTPError, RuntimeError) as e:
            logger.error(f"Telegram bot check failed: {redact_string(str(e))}")
            self._available = False
            return False
        self._available = True
        logger.info(f"Telegram notifications enabled as @{result.get('username', '?')}")
        return True

    async def reinitialize(self) -> bool:
        await self.aclose()
        return await self.initialize()

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    def is_available(self) -> bool:
        return self._available

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    async def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        if self.client is None:
            raise RuntimeError("Telegram client is not initialized")
        response = await self.client.post(
            API_URL.format(token=self.token, method=method), json=payload
        )
        body = response.json()
        if not body.get("ok"):
            raise RuntimeError(f"{method} failed: {body.get('description', response.status_code)}")
        return body.get("result") or {}

    async def _send(self, method: str, payload: dict[str, Any]) -> bool:
        if not self._available:
            logger.warning(f"Telegram unavailable, dropping {method} to chat {payload.get('chat_id')}")
            return False
        try:
            await self._call(method, payload)
            return True
        except (httpx.HTTPError, RuntimeError, ValueError) as e:
            logger.error(f"Telegram {method} to chat {payload.get('chat_id')} failed: {redact_string(str(e))}")
            if isinstance(e, (httpx.TimeoutException, httpx.NetworkError)):
                self._available = False
            return False

    async def send_message(self, user_id: int, text: str) -> bool:
        if not text or not text.strip():
            logger.warning(f"Attempted to send empty message to user {user_id}")
            return False
        return await self._send(
            "sendMessage",
            {
                "chat_id": user_id,
                "text": text[:MAX_MESSAGE_LENGTH],
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            },
        )

    async def send_products_found(self, user_id: int, count: int, query: str) -> bool:
        return await self.send_message(
            user_id, f"🔍 Found <b>{count}</b> listings for \"{html.escape(query)}\""
        )

    async def send_error(self, user_id: int, message: str) -> bool:
        return await self.send_message(user_id, f"❌ {html.escape(message)}")

    async def send_status(self, user_id: int, status: str, details: str) -> bool:
        text = f"ℹ️ <b>{html.escape(status)}</b>"
        if details:
            text += f"\n{html.escape(details)}"
        return await self.send_message(user_id, text)

    async def send_image(self, user_id: int, url: str, caption: str) -> bool:
        sent = await self._send(
            "sendPhoto",
            {
                "chat_id": user_id,
                "photo": url,
                "caption": caption[:MAX_CAPTION_LENGTH],
                "parse_mode": "HTML",
            },
        )
        if not sent:
            logger.warning("Failed to send photo, falling back to text message")
            return await self.send_message(user_id, caption)
        return True

    async def send_admin(self, message: str) -> bool:
        if not self.admin_id:
            logger.debug("No admin chat configured")
            return False
        return await self.send_message(self.admin_id, f"🛠 {html.escape(message)}")
