"""Credential acquisition.

The cache only depends on the `CredentialFetcher` protocol. `HttpCookieFetcher`
bootstraps the anonymous cookie set by visiting the site and letting the H5
gateway issue a fresh `_m_h5_tk`; a browser-driven fetcher can be plugged in
through the same protocol.
"""
import logging
from typing import Protocol

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from goofish_monitor.auth.credentials import CredentialSet, CredentialSource, mask_value
from goofish_monitor.auth.signer import BASE_PARAMS, SEARCH_API
from goofish_monitor.config import config
from goofish_monitor.errors import CredentialFetchError

logger = logging.getLogger(__name__)


class CredentialFetcher(Protocol):
    async def fetch(self, domain: str, interactive: bool = False) -> CredentialSet:
        """Acquire a fresh credential set or raise CredentialFetchError."""
        ...


class HttpCookieFetcher:
    """Collects cookies set by the site landing page and the H5 gateway."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout or config.FETCH_TIMEOUT

    async def fetch(self, domain: str, interactive: bool = False) -> CredentialSet:
        if interactive:
            logger.warning("Interactive acquisition is not available over plain HTTP, fetching headless")

        logger.info(f"Fetching fresh cookies for {domain}...")
        try:
            cookies = await self._collect_cookies(domain)
        except (httpx.TimeoutException, httpx.NetworkError) as e:
            raise CredentialFetchError(domain, f"network error: {e}") from e
        except httpx.HTTPStatusError as e:
            raise CredentialFetchError(domain, f"HTTP {e.response.status_code}") from e

        if not cookies:
            raise CredentialFetchError(domain, "no cookies were issued")

        logger.info(
            f"Fetched {len(cookies)} cookies for {domain}: "
            + ", ".join(f"{k}={mask_value(v)}" for k, v in cookies.items())
        )
        return CredentialSet.from_mapping(domain, cookies, CredentialSource.LIVE)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    async def _collect_cookies(self, domain: str) -> dict[str, str]:
        headers = {
            "User-Agent": config.USER_AGENT,
            "Referer": f"{config.SITE_URL}/",
            "Origin": config.SITE_URL,
        }
        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, headers=headers
        ) as client:
            landing = await client.get(config.SITE_URL)
            landing.raise_for_status()

            # Unsigned gateway call: rejected, but answers with a token cookie
            params = {**BASE_PARAMS, "appKey": config.APP_KEY, "api": SEARCH_API, "data": "{}"}
            gateway = await client.get(
                f"https://{domain}{config.SEARCH_ENDPOINT}", params=params
            )
            if gateway.status_code >= 500:
                gateway.raise_for_status()

            cookies: dict[str, str] = {}
            for cookie in client.cookies.jar:
                if cookie.value:
                    cookies[cookie.name] = cookie.value
            return cookies
