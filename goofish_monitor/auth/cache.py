"""Per-domain credential cache with TTL freshness and single-flight refresh."""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from goofish_monitor.auth.credentials import (
    TOKEN_COOKIE,
    TOKEN_MAX_AGE_HOURS,
    CredentialSet,
    CredentialSource,
    count_required,
    mask_value,
    placeholder_value,
    token_age_hours,
)
from goofish_monitor.auth.fetcher import CredentialFetcher
from goofish_monitor.config import config
from goofish_monitor.errors import CredentialFetchError, CredentialValidationError
from goofish_monitor.store.cookie_store import CookieStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    credentials: CredentialSet
    cached_at: float
    ttl: float


class CredentialCache:
    """Serves credential sets per domain.

    A fresh entry is returned as is. A stale or missing entry is resolved
    through the fallback chain static config -> fetcher -> durable store ->
    empty set. Only one resolution or refresh runs per domain at a time;
    callers arriving while it runs get the stale entry immediately, or wait
    for the result when there is no entry to hand out.
    """

    def __init__(
        self,
        fetcher: CredentialFetcher,
        store: CookieStore,
        ttl_seconds: Optional[float] = None,
        static_cookies: Optional[dict[str, str]] = None,
        required_keys: Optional[Iterable[str]] = None,
        min_required: Optional[int] = None,
        optional_keys: Optional[Iterable[str]] = None,
        fallback_ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.fetcher = fetcher
        self.store = store
        self.ttl = config.credential_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.fallback_ttl = (
            config.FALLBACK_TTL_SECONDS if fallback_ttl_seconds is None else fallback_ttl_seconds
        )
        self.static_cookies = dict(config.static_cookies() if static_cookies is None else static_cookies)
        self.required_keys = tuple(config.REQUIRED_COOKIES if required_keys is None else required_keys)
        self.min_required = config.MIN_REQUIRED_COOKIES if min_required is None else min_required
        self.optional_keys = tuple(
            config.OPTIONAL_COOKIES if optional_keys is None else optional_keys
        )
        self.clock = clock

        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self.fetch_count = 0

    # Reads

    async def get(self, domain: str) -> CredentialSet:
        """Usable credentials for `domain`; never raises for fetch trouble."""
        while True:
            entry = self._entries.get(domain)
            if entry is not None and self._is_fresh(entry):
                return entry.credentials

            pending = self._inflight.get(domain)
            if pending is None:
                break
            if entry is not None:
                logger.debug(f"Refresh in progress for {domain}, serving stale credentials")
                return entry.credentials
            # A refresh commits nothing when it fails, so re-check after it settles
            await asyncio.wait({pending})
            settled = self._entries.get(domain)
            if settled is not None:
                return settled.credentials

        if entry is not None:
            logger.info(f"Credentials for {domain} expired, resolving")
        task = self._spawn(domain, self._resolve(domain))
        return await asyncio.shield(task)

    def peek(self, domain: str) -> Optional[CredentialSet]:
        """Cached set regardless of age, without triggering anything."""
        entry = self._entries.get(domain)
        return entry.credentials if entry else None

    def is_fresh(self, domain: str) -> bool:
        entry = self._entries.get(domain)
        return entry is not None and self._is_fresh(entry)

    def is_refreshing(self, domain: str) -> bool:
        return domain in self._inflight

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.cached_at < entry.ttl

    # Refresh

    async def refresh(self, domain: str, force_interactive: bool = False) -> bool:
        """Fetch unconditionally and commit only a validated result."""
        while True:
            pending = self._inflight.get(domain)
            if pending is None:
                break
            logger.debug(f"Waiting for in-flight fetch of {domain} before refreshing")
            await asyncio.wait({pending})

        task = self._spawn(domain, self._refresh_live(domain, force_interactive))
        return await asyncio.shield(task)

    def refresh_in_background(self, domain: str) -> Optional[asyncio.Task]:
        """Schedule a refresh unless one is already running for `domain`."""
        if domain in self._inflight:
            return None
        task = self._spawn(domain, self._refresh_live(domain, False))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        logger.info(f"Background credential refresh scheduled for {domain}")
        return task

    def invalidate(self, domain: str) -> None:
        """Drop the cached entry so the next `get` resolves again."""
        if self._entries.pop(domain, None) is not None:
            logger.info(f"Credential cache entry for {domain} invalidated")

    def _spawn(self, domain: str, coro: Awaitable) -> asyncio.Task:
        task = asyncio.create_task(self._exclusive(domain, coro))
        self._inflight[domain] = task
        return task

    async def _exclusive(self, domain: str, coro: Awaitable):
        try:
            return await coro
        finally:
            if self._inflight.get(domain) is asyncio.current_task():
                del self._inflight[domain]

    async def _resolve(self, domain: str) -> CredentialSet:
        """Walk the fallback chain and commit the first usable candidate."""
        static = self._from_static(domain)
        if static is not None:
            try:
                return await self._accept(domain, static)
            except CredentialValidationError as e:
                logger.warning(f"Static cookies rejected: {e}")

        try:
            live = await self._fetch(domain, interactive=False)
            return await self._accept(domain, live)
        except CredentialFetchError as e:
            logger.error(f"{e}; trying durable storage")
        except CredentialValidationError as e:
            logger.error(f"Fetched cookies rejected: {e}; trying durable storage")

        stored = self.store.load(domain)
        if stored is not None:
            try:
                return await self._accept(domain, stored)
            except CredentialValidationError as e:
                logger.error(f"Stored cookies rejected: {e}")

        logger.error(f"No usable credentials for {domain}, continuing with an empty set")
        empty = CredentialSet.empty(domain)
        self._commit(domain, empty)
        return empty

    async def _refresh_live(self, domain: str, interactive: bool) -> bool:
        logger.info(f"Refreshing credentials for {domain} (interactive={interactive})")
        try:
            live = await self._fetch(domain, interactive=interactive)
            await self._accept(domain, live)
        except (CredentialFetchError, CredentialValidationError) as e:
            logger.error(f"Credential refresh for {domain} failed: {e}")
            return False
        logger.info(f"Credentials for {domain} refreshed")
        return True

    async def _fetch(self, domain: str, interactive: bool) -> CredentialSet:
        self.fetch_count += 1
        try:
            candidate = await self.fetcher.fetch(domain, interactive=interactive)
        except CredentialFetchError:
            raise
        except Exception as e:
            raise CredentialFetchError(domain, str(e)) from e
        return candidate.with_source(CredentialSource.LIVE)

    def _from_static(self, domain: str) -> Optional[CredentialSet]:
        header = self.static_cookies.get(domain)
        if not header:
            return None
        return CredentialSet.from_header(domain, header, CredentialSource.STATIC)

    # Validation and commit

    def validate(self, candidate: CredentialSet) -> bool:
        """True iff at least `min_required` required keys are present and non-empty."""
        found = count_required(candidate, self.required_keys)
        valid = found >= self.min_required
        logger.debug(
            f"Credential validation for {candidate.domain}: "
            f"{'ok' if valid else 'failed'} ({found}/{len(self.required_keys)} required keys)"
        )
        return valid

    async def _accept(self, domain: str, candidate: CredentialSet) -> CredentialSet:
        if not self.validate(candidate):
            raise CredentialValidationError(
                domain, count_required(candidate, self.required_keys), self.min_required
            )
        self._warn_token_age(candidate)
        accepted = self._with_placeholders(candidate)
        self._commit(domain, accepted)
        if accepted.source in (CredentialSource.STATIC, CredentialSource.LIVE):
            try:
                await self.store.save(accepted)
            except OSError as e:
                logger.error(f"Failed to persist credentials for {domain}: {e}")
        return accepted

    def _commit(self, domain: str, credentials: CredentialSet) -> None:
        ttl = self.ttl
        if credentials.source in (CredentialSource.FALLBACK, CredentialSource.EMPTY):
            ttl = min(self.ttl, self.fallback_ttl)
        self._entries[domain] = CacheEntry(credentials, self.clock(), ttl)
        logger.info(
            f"Committed {len(credentials)} cookies for {domain} from {credentials.source.value}"
        )

    def _with_placeholders(self, candidate: CredentialSet) -> CredentialSet:
        missing = [
            key
            for key in self.optional_keys
            if key not in self.required_keys and not (candidate.get(key) or "").strip()
        ]
        if not missing:
            return candidate
        logger.warning(
            f"Degraded credentials for {candidate.domain}: synthesizing placeholders for {missing}"
        )
        return candidate.with_values({key: placeholder_value() for key in missing})

    def _warn_token_age(self, candidate: CredentialSet) -> None:
        age = token_age_hours(candidate.get(TOKEN_COOKIE), now=self.clock())
        if age is not None and age > TOKEN_MAX_AGE_HOURS:
            logger.warning(f"{TOKEN_COOKIE} for {candidate.domain} is {age:.0f} hours old")

    # Reporting

    def stats(self) -> dict:
        now = self.clock()
        domains = {}
        for domain, entry in self._entries.items():
            creds = entry.credentials
            domains[domain] = {
                "cookie_count": len(creds),
                "source": creds.source.value,
                "age_seconds": round(now - entry.cached_at, 1),
                "fresh": self._is_fresh(entry),
                "refreshing": domain in self._inflight,
                "key_cookies": {
                    key: mask_value(creds.get(key) or "")
                    for key in (*self.required_keys, *self.optional_keys)
                    if key in creds
                },
            }
        return {
            "total_domains": len(self._entries),
            "total_cookies": sum(len(e.credentials) for e in self._entries.values()),
            "ttl_minutes": self.ttl / 60,
            "fetch_count": self.fetch_count,
            "domains": domains,
        }
