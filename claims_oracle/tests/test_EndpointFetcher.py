"""Unit tests for EndpointFetcher."""

import httpx
import pytest

from claims_oracle.src.EndpointFetcher import (
    DEFAULT_TIMEOUT,
    EndpointFetcher,
    FetcherError,
    FetcherHTTPError,
    close_shared_client,
    shared_client,
)


def make_fetcher(handler, headers=None) -> EndpointFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EndpointFetcher(timeout=1.0, client=client, headers=headers)


class TestFetchJson:
    """Test JSON fetching."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"delayMinutes": 45}})

        fetcher = make_fetcher(handler, headers={"x-api-key": "abc"})
        document = await fetcher.fetch_json("https://flights.example.com/SQ100?time=5")

        assert document == {"data": {"delayMinutes": 45}}
        assert seen[0].url.path == "/SQ100"
        assert seen[0].headers["x-api-key"] == "abc"

    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        fetcher = make_fetcher(lambda request: httpx.Response(503, text="maintenance"))
        with pytest.raises(FetcherHTTPError) as exc_info:
            await fetcher.fetch_json("https://flights.example.com/SQ100")
        assert exc_info.value.status_code == 503
        assert exc_info.value.url == "https://flights.example.com/SQ100"
        assert "maintenance" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = make_fetcher(handler)
        with pytest.raises(FetcherError, match="Request failed"):
            await fetcher.fetch_json("https://flights.example.com/SQ100")

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        fetcher = make_fetcher(handler)
        with pytest.raises(FetcherError, match="Request timeout"):
            await fetcher.fetch_json("https://flights.example.com/SQ100")

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        fetcher = make_fetcher(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(FetcherError, match="Invalid JSON"):
            await fetcher.fetch_json("https://flights.example.com/SQ100")


class TestSharedClient:
    """Test shared client lifecycle."""

    def test_default_timeout(self) -> None:
        assert EndpointFetcher().timeout == DEFAULT_TIMEOUT

    @pytest.mark.asyncio
    async def test_shared_client_reused_and_closed(self) -> None:
        """Fetchers without an injected client share one, recreated after close."""
        first = shared_client()
        assert EndpointFetcher().client is first
        assert EndpointFetcher().client is shared_client()

        await close_shared_client()
        assert first.is_closed
        assert shared_client() is not first
        await close_shared_client()
        await close_shared_client()
