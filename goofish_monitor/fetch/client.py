"""HTTP client for signed search calls, with retries and error handling."""
import logging
from typing import Any, Optional

import httpx
import orjson
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from goofish_monitor.auth.signer import SignedRequest
from goofish_monitor.config import config
from goofish_monitor.errors import RemoteApiError
from goofish_monitor.fetch.endpoints import get_search_url

logger = logging.getLogger(__name__)


class SearchClient:
    """HTTP client performing signed calls against the search endpoint."""

    def __init__(self, url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.url = url or get_search_url()
        limits = httpx.Limits(
            max_connections=50,
            max_keepalive_connections=10,
        )
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            http2=True,
            timeout=config.TIMEOUT,
            follow_redirects=False,
            limits=limits,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _headers(self, cookie_header: str) -> dict[str, str]:
        headers = {
            "User-Agent": config.USER_AGENT,
            "Accept": "application/json",
            "Referer": f"{config.SITE_URL}/",
            "Origin": config.SITE_URL,
        }
        if cookie_header:
            headers["Cookie"] = cookie_header
        return headers

    @retry(
        stop=stop_after_attempt(config.MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    async def search(self, signed: SignedRequest, cookie_header: str) -> dict[str, Any]:
        """Perform one signed call and return the decoded JSON envelope.

        401/403/429 and non-JSON bodies raise RemoteApiError; network errors
        are retried and then re-raised as httpx exceptions.
        """
        try:
            response = await self.client.get(
                self.url,
                params=signed.to_params(),
                headers=self._headers(cookie_header),
                timeout=config.TIMEOUT,
            )
        except (httpx.TimeoutException, httpx.NetworkError) as e:
            logger.warning(f"Network error calling {signed.api}: {e}")
            raise

        if response.status_code >= 400:
            # 401/403/429 mark the error as credential related
            raise RemoteApiError(
                f"Search API answered HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise RemoteApiError(
                f"Search API returned a non-JSON body ({len(response.content)} bytes)",
                status_code=response.status_code,
            ) from e
        if not isinstance(payload, dict):
            raise RemoteApiError("Search API returned an unexpected JSON shape")
        return payload
