"""Tests for the bearer credential cache and the identity client."""

import httpx
import pytest

from portal.clients.identity_client import IdentityProviderClient
from portal.exceptions import AuthAcquisitionError


class TestTokenCache:
    """Test credential reuse and refresh around the expiry margin."""

    @pytest.mark.asyncio
    async def test_first_call_acquires_token(self, token_cache, graph, clock):
        credential = await token_cache.get_token()

        assert credential.token == "token-1"
        assert credential.expires_at == clock() + 3600
        assert graph.token_requests == 1

    @pytest.mark.asyncio
    async def test_cached_token_returned_outside_margin(self, token_cache, graph, clock):
        first = await token_cache.get_token()

        clock.advance(3600 - 6 * 60)
        second = await token_cache.get_token()

        assert second == first
        assert graph.token_requests == 1

    @pytest.mark.asyncio
    async def test_token_refreshed_inside_margin(self, token_cache, graph, clock):
        first = await token_cache.get_token()

        clock.advance(3600 - 4 * 60)
        second = await token_cache.get_token()

        assert second.token == "token-2"
        assert second.expires_at > first.expires_at
        assert graph.token_requests == 2

    @pytest.mark.asyncio
    async def test_force_refresh_skips_cache(self, token_cache, graph):
        await token_cache.get_token()
        credential = await token_cache.get_token(force_refresh=True)

        assert credential.token == "token-2"
        assert graph.token_requests == 2

    @pytest.mark.asyncio
    async def test_invalidate_drops_credential(self, token_cache, graph):
        await token_cache.get_token()
        token_cache.invalidate()

        assert token_cache.needs_refresh()
        await token_cache.get_token()
        assert graph.token_requests == 2

    @pytest.mark.asyncio
    async def test_acquisition_failure_raises(self, token_cache, graph):
        graph.fail_token = True

        with pytest.raises(AuthAcquisitionError) as exc_info:
            await token_cache.get_token()

        assert "Invalid client secret" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_failed_refresh_still_needs_refresh(self, token_cache, graph, clock):
        await token_cache.get_token()
        clock.advance(3600)
        graph.fail_token = True

        with pytest.raises(AuthAcquisitionError):
            await token_cache.get_token()
        assert token_cache.needs_refresh()


class TestIdentityProviderClient:
    """Test the client-credential exchange."""

    @pytest.mark.asyncio
    async def test_posts_client_credentials_form(self, identity_client, graph):
        await identity_client.acquire_token(["https://graph.microsoft.com/.default"])

        request = graph.requests[-1]
        assert request.method == "POST"
        assert str(request.url) == "https://login.test/tenant-1/oauth2/v2.0/token"
        body = request.content.decode()
        assert "grant_type=client_credentials" in body
        assert "client_id=client-1" in body
        assert "scope=https%3A%2F%2Fgraph.microsoft.com%2F.default" in body

    @pytest.mark.asyncio
    async def test_missing_access_token_raises(self, clock):
        def handler(request):
            return httpx.Response(200, json={"expires_in": 3600})

        client = IdentityProviderClient(
            "tenant-1", "client-1", "secret-1",
            authority="https://login.test",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            clock=clock,
        )

        with pytest.raises(AuthAcquisitionError):
            await client.acquire_token(["scope"])

    @pytest.mark.asyncio
    async def test_unreachable_endpoint_raises(self, clock):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = IdentityProviderClient(
            "tenant-1", "client-1", "secret-1",
            authority="https://login.test",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            clock=clock,
        )

        with pytest.raises(AuthAcquisitionError) as exc_info:
            await client.acquire_token(["scope"])
        assert "connection refused" in str(exc_info.value)
