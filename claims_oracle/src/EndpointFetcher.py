"""EndpointFetcher: Bounded HTTP GETs against provider endpoints.

All fetchers of a worker process share one pooled httpx.AsyncClient unless a
client is injected. Whatever goes wrong on the way (connection refused,
timeout, non-2xx status, body that is not JSON) surfaces as FetcherError, so
the listener worker has a single "provider gave no answer" case to handle.

.. code-block:: python

    fetcher = EndpointFetcher(timeout=5.0, headers={"x-api-key": "abc"})
    document = await fetcher.fetch_json(
        "https://flights.example.com/SQ100?time=1743346800"
    )
    await close_shared_client()
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
BODY_PREVIEW = 200

_shared: httpx.AsyncClient | None = None


class FetcherError(Exception):
    """Raised when an endpoint does not produce a usable document."""

    pass


class FetcherHTTPError(FetcherError):
    """Endpoint answered with a non-2xx status.

    :ivar status_code: Status of the response.
    :ivar url: Requested URL.
    """

    def __init__(self, url: str, status_code: int, body: str = ""):
        self.url = url
        self.status_code = status_code
        detail = f": {body[:BODY_PREVIEW]}" if body else ""
        super().__init__(f"{url} returned HTTP {status_code}{detail}")


def shared_client() -> httpx.AsyncClient:
    """Get the process-wide client, creating it on first use or after close."""
    global _shared
    if _shared is None or _shared.is_closed:
        _shared = httpx.AsyncClient(
            timeout=httpx.Timeout(DEFAULT_TIMEOUT, connect=5.0),
            limits=httpx.Limits(max_connections=32, max_keepalive_connections=8),
            follow_redirects=True,
        )
    return _shared


async def close_shared_client() -> None:
    """Release the process-wide client. Safe to call when none exists."""
    global _shared
    client, _shared = _shared, None
    if client is not None and not client.is_closed:
        await client.aclose()


class EndpointFetcher:
    """JSON document fetcher for one worker.

    :ivar timeout: Per-request timeout in seconds.
    :ivar headers: Headers sent with every request (API keys and the like).
    """

    def __init__(
        self,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.timeout = timeout or DEFAULT_TIMEOUT
        self.headers = dict(headers or {})
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else shared_client()

    async def fetch_json(self, url: str) -> Any:
        """GET a URL and decode its JSON body.

        :param url: Endpoint URL already bound to the query.
        :returns: Decoded JSON value.
        :raises FetcherHTTPError: If the status is not 2xx.
        :raises FetcherError: On transport errors, timeouts or a non-JSON body.
        """
        try:
            response = await self.client.get(url, headers=self.headers, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise FetcherError(f"Request timeout for {url}: {e}") from e
        except httpx.HTTPError as e:
            raise FetcherError(f"Request failed for {url}: {e}") from e

        if response.is_error:
            logger.debug(f"GET {url} -> {response.status_code}")
            raise FetcherHTTPError(url, response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise FetcherError(f"Invalid JSON from {url}: {e}") from e
