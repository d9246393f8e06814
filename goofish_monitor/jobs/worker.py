"""Polling loop of one user session."""
import asyncio
import html
import logging
from typing import Optional

from goofish_monitor.auth.cache import CredentialCache
from goofish_monitor.auth.signer import build_search_payload, build_signed_request
from goofish_monitor.config import config
from goofish_monitor.errors import RemoteApiError
from goofish_monitor.fetch.client import SearchClient
from goofish_monitor.jobs.scheduler import StopToken
from goofish_monitor.jobs.user_session import UserSession
from goofish_monitor.notify.sink import NotificationSink
from goofish_monitor.parse.models import SearchItem
from goofish_monitor.parse.redact import redact_string
from goofish_monitor.parse.search_results import parse_search_response
from goofish_monitor.store.seen_items import SeenItemsDB

logger = logging.getLogger(__name__)

# How often a paused worker looks at its session again
PAUSE_POLL_SECONDS = 1.0


def format_item_caption(item: SearchItem) -> str:
    """HTML caption for one listing."""
    lines = [
        f"<b>🛍️ {html.escape(item.title)}</b>",
        "",
        f"<b>💰 Price:</b> {item.price_display}",
        f"<b>📍 Location:</b> {html.escape(item.location or '-')}",
        f"<b>⏳ Age:</b> {item.age_display}",
    ]
    if item.seller:
        lines.append(f"<b>👤 Seller:</b> {html.escape(item.seller)}")
    lines.append("")
    lines.append(f"<a href=\"{item.url}\">🔗 Open listing</a>")
    return "\n".join(lines)


class SessionWorker:
    """Runs search iterations for one session until its stop token fires."""

    def __init__(
        self,
        session: UserSession,
        cache: CredentialCache,
        client: SearchClient,
        sink: NotificationSink,
        seen_items: Optional[SeenItemsDB] = None,
        token: Optional[StopToken] = None,
        domain: Optional[str] = None,
        error_backoff: Optional[float] = None,
        notify_delay: float = 1.5,
    ):
        self.session = session
        self.cache = cache
        self.client = client
        self.sink = sink
        self.seen_items = seen_items
        self.token = token or StopToken()
        self.domain = domain or config.API_DOMAIN
        self.error_backoff = config.ERROR_BACKOFF_SECONDS if error_backoff is None else error_backoff
        self.notify_delay = notify_delay
        # Used when no seen-items database is attached
        self._seen: set[str] = set()

    @property
    def user_id(self) -> int:
        return self.session.user_id

    async def run(self) -> None:
        """Iterate until stopped. Errors inside an iteration never end the loop."""
        logger.info(f"Worker started for user {self.user_id}")
        try:
            while not self.token.stopped:
                if self.session.paused:
                    if await self.token.wait(PAUSE_POLL_SECONDS):
                        break
                    continue

                found = await self.run_iteration()
                self.session.mark_iteration()
                if found:
                    logger.info(f"Iteration completed for user {self.user_id}: found {found} listings")

                interval = self.session.settings.check_interval
                logger.debug(f"Waiting {interval}s for next check (user {self.user_id})")
                if await self.token.wait(interval):
                    break
        except asyncio.CancelledError:
            logger.info(f"Worker for user {self.user_id} cancelled")
            raise
        finally:
            logger.info(
                f"Worker stopped for user {self.user_id} "
                f"(found {self.session.total_products_found} listings in total)"
            )

    async def run_iteration(self) -> int:
        """Search every query once. Returns the number of listings found."""
        found = 0
        for query in list(self.session.queries):
            if self.token.stopped or self.session.paused:
                break
            try:
                items = await self.search(query)
            except RemoteApiError as e:
                self._on_error(query, e)
                if e.credential_related:
                    logger.warning(
                        f"Credential-related rejection for user {self.user_id} "
                        f"(status={e.status_code}, ret={e.ret_code}), refreshing in background"
                    )
                    self.cache.refresh_in_background(self.domain)
                if await self.token.wait(self.error_backoff):
                    break
                continue
            except Exception as e:
                self._on_error(query, e)
                if await self.token.wait(self.error_backoff):
                    break
                continue

            if items:
                found += len(items)
                self.session.add_products_found(len(items))
                logger.info(f"Found {len(items)} listings for '{query}' (user {self.user_id})")
                await self._deliver(query, items)

            if await self.token.wait(self.session.settings.delay_seconds):
                break
        return found

    async def search(self, query: str) -> list[SearchItem]:
        """All pages of one query, up to the configured page count."""
        settings = self.session.settings
        results: list[SearchItem] = []
        for page in range(1, settings.max_pages + 1):
            if self.token.stopped:
                break
            credentials = await self.cache.get(self.domain)
            payload = build_search_payload(query, page, settings.rows_per_page)
            signed = build_signed_request(credentials, payload)
            self.session.record_request()
            response = await self.client.search(signed, credentials.to_header())
            items = parse_search_response(response, query, max_age_minutes=settings.max_age_minutes)
            if not items:
                if page == 1:
                    logger.debug(f"No listings on first page for '{query}'")
                break
            results.extend(items)
            if page < settings.max_pages and await self.token.wait(settings.delay_seconds):
                break
        return results

    def _on_error(self, query: str, error: Exception) -> None:
        message = redact_string(str(error)) or type(error).__name__
        logger.error(f"Error searching '{query}' for user {self.user_id}: {message}")
        self.session.record_error(message)

    async def _filter_new(self, items: list[SearchItem]) -> list[SearchItem]:
        unique = list({item.item_id: item for item in items}.values())
        if not self.session.settings.notify_new_only:
            return unique
        if self.seen_items is not None:
            new_ids = set(await self.seen_items.filter_new(self.user_id, [i.item_id for i in unique]))
        else:
            new_ids = {i.item_id for i in unique if i.item_id not in self._seen}
        return [item for item in unique if item.item_id in new_ids]

    async def _mark_seen(self, items: list[SearchItem]) -> None:
        if self.seen_items is not None:
            await self.seen_items.mark_seen(self.user_id, [(i.item_id, i.query) for i in items])
        else:
            self._seen.update(i.item_id for i in items)

    async def _deliver(self, query: str, items: list[SearchItem]) -> None:
        to_notify = await self._filter_new(items)
        if not to_notify:
            logger.debug(f"No new listings for '{query}' (user {self.user_id})")
            return

        for item in reversed(to_notify):
            self.session.add_recent_product(item.summary())

        logger.info(f"Sending {len(to_notify)} listings to user {self.user_id}")
        await self.sink.send_products_found(self.user_id, len(to_notify), query)
        delivered = []
        for item in to_notify:
            if self.token.stopped:
                break
            caption = format_item_caption(item)
            if item.image_url:
                sent = await self.sink.send_image(self.user_id, item.image_url, caption)
            else:
                sent = await self.sink.send_message(self.user_id, caption)
            if sent:
                delivered.append(item)
            else:
                logger.warning(f"Notification for listing {item.item_id} was not delivered")
            await self.token.wait(self.notify_delay)
        await self._mark_seen(delivered)
