"""
Test 12: Remote fetching (fetching.py)

Tests HttpFetcher against an httpx mock transport.
"""

import httpx
import pytest

from stowage.faults import RemoteFetchFailed
from stowage.fetching import MAX_ERROR_BODY, HttpFetcher

from tests.conftest import PNG_BYTES


def fetcher_for(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    return HttpFetcher(client=client), client


class TestHttpFetcher:

    @pytest.mark.asyncio
    async def test_returns_bytes(self):
        def handler(request):
            assert request.url == "https://cdn.example.com/a.png"
            return httpx.Response(200, content=PNG_BYTES)

        fetcher, client = fetcher_for(handler)
        assert await fetcher("https://cdn.example.com/a.png") == PNG_BYTES
        await client.aclose()

    @pytest.mark.asyncio
    async def test_follows_redirects(self):
        def handler(request):
            if request.url.path == "/old":
                return httpx.Response(302, headers={"location": "https://cdn.example.com/new"})
            return httpx.Response(200, content=b"moved")

        fetcher, client = fetcher_for(handler)
        assert await fetcher("https://cdn.example.com/old") == b"moved"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_error_status(self):
        def handler(request):
            return httpx.Response(403, text="forbidden " + "x" * 2000)

        fetcher, client = fetcher_for(handler)
        with pytest.raises(RemoteFetchFailed) as exc:
            await fetcher("https://cdn.example.com/secret.png")

        fault = exc.value
        assert fault.status == 406
        assert fault.upstream_status == 403
        assert fault.url == "https://cdn.example.com/secret.png"
        assert len(fault.metadata["upstream_body"]) == MAX_ERROR_BODY
        assert fault.message.startswith(
            "Cannot download file from url https://cdn.example.com/secret.png. Verify the URL and try again. 403 - forbidden"
        )
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        fetcher, client = fetcher_for(handler)
        with pytest.raises(RemoteFetchFailed) as exc:
            await fetcher("https://down.example.com/a.png")
        assert exc.value.upstream_status is None
        assert "connection refused" in exc.value.message
        await client.aclose()

    @pytest.mark.asyncio
    async def test_invalid_url(self):
        fetcher, client = fetcher_for(lambda request: httpx.Response(200))
        with pytest.raises(RemoteFetchFailed):
            await fetcher("https://cdn.example.com/\x00a.png")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self):
        fetcher, client = fetcher_for(lambda request: httpx.Response(200))
        await fetcher.aclose()
        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_is_created_lazily_and_closed(self):
        fetcher = HttpFetcher(timeout=2.0)
        client = fetcher._get_client()
        assert fetcher._get_client() is client
        assert client.timeout.connect == 2.0
        await fetcher.aclose()
        assert client.is_closed
