"""
Connector HTTP Module
=====================

Shared HTTP fetching for connectors: a default User-Agent, per-request
timeouts, capped exponential backoff, and explicit throttle delays between
page and detail fetches.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from catalog_worker import __version__
from catalog_worker.ingestion.connectors.errors import ConnectorFetchError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"catalog-worker/{__version__} (catalog ingestion)"
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3

# Throttle delays (seconds)
DELAY_BETWEEN_PAGES = 1.5
DELAY_BETWEEN_BOOK_PAGES = 0.4

# Backoff schedule (seconds): base doubles per attempt, up to the cap
RATE_LIMIT_BACKOFF_BASE = 1.0
RATE_LIMIT_BACKOFF_CAP = 30.0
NETWORK_BACKOFF_BASE = 0.5
NETWORK_BACKOFF_CAP = 10.0


def backoff_delay(attempt: int, rate_limited: bool = False) -> float:
    """
    Compute the wait before retrying.

    Args:
        attempt: Zero-based attempt that just failed
        rate_limited: True when the server answered 429

    Returns:
        Delay in seconds
    """
    if rate_limited:
        return min(RATE_LIMIT_BACKOFF_BASE * 2**attempt, RATE_LIMIT_BACKOFF_CAP)
    return min(NETWORK_BACKOFF_BASE * 2**attempt, NETWORK_BACKOFF_CAP)


class HttpFetcher:
    """
    HTTP GET with retries, shared by all connectors of a job.

    Retry policy:
    - 429 responses are retried with the rate-limit backoff
    - Transport errors (connect failures, timeouts) are retried with the
      network backoff and raised as ConnectorFetchError once exhausted
    - Any other status is returned as-is; the connector decides whether it
      means end-of-catalog or failure
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        pacing: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the fetcher.

        Args:
            user_agent: User-Agent header sent with every request
            timeout: Default per-request timeout in seconds
            max_retries: Retries after the first attempt
            pacing: If False, throttle and backoff waits are skipped (tests)
            transport: Optional httpx transport (e.g. httpx.MockTransport)
        """
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max_retries
        self.pacing = pacing
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazily created async client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def throttle(self, seconds: float) -> None:
        """Wait between requests to respect source rate limits."""
        if self.pacing and seconds > 0:
            await asyncio.sleep(seconds)

    async def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ) -> httpx.Response:
        """
        GET a URL with retries.

        Args:
            url: URL to fetch
            headers: Extra request headers
            timeout: Per-request timeout override
            max_retries: Retry count override (0 disables retries)

        Returns:
            The final httpx.Response (possibly a non-2xx status)

        Raises:
            ConnectorFetchError: If every attempt failed at the transport level
        """
        retries = self.max_retries if max_retries is None else max_retries
        request_timeout = self.timeout if timeout is None else timeout

        last_error: httpx.TransportError | None = None
        for attempt in range(retries + 1):
            rate_limited = False
            try:
                response = await self.client.get(url, headers=headers, timeout=request_timeout)
            except httpx.TransportError as e:
                last_error = e
                logger.warning(f"Error fetching {url}: {e!r} (attempt {attempt + 1}/{retries + 1})")
            else:
                if response.status_code != 429 or attempt >= retries:
                    return response
                rate_limited = True
                logger.warning(f"Rate limited by {url} (attempt {attempt + 1}/{retries + 1})")

            if attempt < retries:
                delay = backoff_delay(attempt, rate_limited=rate_limited)
                logger.info(f"Retrying {url} in {delay:.1f}s")
                await self._backoff(delay)

        raise ConnectorFetchError(url, retries + 1, last_error) from last_error

    async def _backoff(self, seconds: float) -> None:
        if self.pacing:
            await asyncio.sleep(seconds)

    async def aclose(self) -> None:
        """Close the underlying client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
