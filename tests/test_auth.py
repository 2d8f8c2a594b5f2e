import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest
import respx

from vascatalog.errors import AuthenticationError, ConfigurationError
from vascatalog.ingest.auth import TokenManager
from vascatalog.ingest.models import SupplierConfig


@pytest.mark.asyncio
async def test_token_is_cached_until_refresh_buffer(supplier, clock, fixture_json):
    async with respx.mock(assert_all_called=True) as router:
        route = router.post(supplier.resolved_token_url).mock(
            return_value=httpx.Response(200, json=fixture_json("mobilemart/token.json"))
        )
        async with httpx.AsyncClient() as session:
            manager = TokenManager(supplier, session=session, clock=clock)
            token = await manager.get_access_token()
            again = await manager.get_access_token()

    assert token is again
    assert token.authorization == "Bearer tok-1"
    assert token.expires_at == clock.now.add(seconds=3600 - 300)
    assert route.call_count == 1
    form = parse_qs(route.calls[0].request.content.decode())
    assert form == {"grant_type": ["client_credentials"], "client_id": ["client"], "client_secret": ["secret"]}


@pytest.mark.asyncio
async def test_token_renewed_inside_refresh_buffer(supplier, clock):
    async with respx.mock(assert_all_called=True) as router:
        route = router.post(supplier.resolved_token_url).mock(
            side_effect=[
                httpx.Response(200, json={"access_token": "first", "expires_in": 3600}),
                httpx.Response(200, json={"access_token": "second", "expires_in": 3600}),
            ]
        )
        async with httpx.AsyncClient() as session:
            manager = TokenManager(supplier, session=session, clock=clock)
            first = await manager.get_access_token()
            clock.advance(seconds=3299)
            assert manager.is_valid()
            clock.advance(seconds=1)
            assert not manager.is_valid()
            second = await manager.get_access_token()

    assert first.access_token == "first"
    assert second.access_token == "second"
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_short_lived_token_is_reused_until_halfway(supplier, clock, caplog):
    async with respx.mock(assert_all_called=True) as router:
        route = router.post(supplier.resolved_token_url).mock(
            return_value=httpx.Response(200, json={"access_token": "short", "expires_in": 120})
        )
        async with httpx.AsyncClient() as session:
            manager = TokenManager(supplier, session=session, clock=clock)
            with caplog.at_level("WARNING", logger="vascatalog.ingest.auth"):
                token = await manager.get_access_token()
            again = await manager.get_access_token()
            clock.advance(seconds=59)
            assert manager.is_valid()
            clock.advance(seconds=1)
            assert not manager.is_valid()

    assert token is again
    assert token.expires_at == token.issued_at.add(seconds=60)
    assert route.call_count == 1
    assert "within the 300s refresh buffer" in caplog.text


@pytest.mark.asyncio
async def test_string_encoded_token_payload(supplier, clock):
    body = json.dumps({"accessToken": "tok-2", "expiresIn": "600"})
    async with respx.mock(assert_all_called=True) as router:
        router.post(supplier.resolved_token_url).mock(return_value=httpx.Response(200, json=body))
        async with httpx.AsyncClient() as session:
            manager = TokenManager(supplier, session=session, clock=clock)
            token = await manager.get_access_token()

    assert token.access_token == "tok-2"
    assert token.expires_in == 600
    assert token.token_type == "Bearer"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"access_token": "tok"}),
        httpx.Response(200, json={"expires_in": 3600}),
        httpx.Response(200, text="not json"),
        httpx.Response(200, text=""),
        httpx.Response(200, json=[1, 2]),
        httpx.Response(401, json={"error": "invalid_client"}),
        httpx.Response(500, text="boom"),
    ],
)
async def test_bad_token_response_fails_closed(supplier, clock, response):
    async with respx.mock(assert_all_called=True) as router:
        router.post(supplier.resolved_token_url).mock(return_value=response)
        async with httpx.AsyncClient() as session:
            manager = TokenManager(supplier, session=session, clock=clock)
            with pytest.raises(AuthenticationError):
                await manager.get_access_token()

    assert manager.token is None
    assert not manager.is_valid()


@pytest.mark.asyncio
async def test_transport_error_becomes_authentication_error(supplier, clock):
    async with respx.mock(assert_all_called=True) as router:
        router.post(supplier.resolved_token_url).mock(side_effect=httpx.ConnectTimeout("timed out"))
        async with httpx.AsyncClient() as session:
            manager = TokenManager(supplier, session=session, clock=clock)
            with pytest.raises(AuthenticationError):
                await manager.request_access_token()


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(supplier, clock):
    async with respx.mock(assert_all_called=True) as router:
        route = router.post(supplier.resolved_token_url).mock(
            return_value=httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        )
        async with httpx.AsyncClient() as session:
            manager = TokenManager(supplier, session=session, clock=clock)
            tokens = await asyncio.gather(*(manager.get_access_token() for _ in range(5)))

    assert {t.access_token for t in tokens} == {"tok"}
    assert route.call_count == 1


@pytest.mark.asyncio
async def test_invalidate_forces_new_request(supplier, clock):
    async with respx.mock(assert_all_called=True) as router:
        route = router.post(supplier.resolved_token_url).mock(
            return_value=httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        )
        async with httpx.AsyncClient() as session:
            manager = TokenManager(supplier, session=session, clock=clock)
            await manager.get_access_token()
            manager.invalidate()
            assert manager.token is None
            await manager.get_access_token()

    assert route.call_count == 2


def test_live_integration_requires_credentials():
    config = SupplierConfig(code="FLASH", name="Flash", base_url="https://flash.test", live_integration=True)
    with pytest.raises(ConfigurationError, match="FLASH_CLIENT_ID"):
        TokenManager(config)


@pytest.mark.asyncio
async def test_offline_mode_without_credentials(offline_supplier, clock):
    async with httpx.AsyncClient() as session:
        manager = TokenManager(offline_supplier, session=session, clock=clock)
        with pytest.raises(AuthenticationError, match="No client credentials"):
            await manager.get_access_token()
        health = await manager.health_check()

    assert health["status"] == "unhealthy"
    assert health["api_url"] == "https://api.test/api/v1"


@pytest.mark.asyncio
async def test_health_check_reports_token_state(supplier, clock):
    async with respx.mock(assert_all_called=True) as router:
        router.post(supplier.resolved_token_url).mock(
            return_value=httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        )
        async with httpx.AsyncClient() as session:
            manager = TokenManager(supplier, session=session, clock=clock)
            health = await manager.health_check()

    assert health["status"] == "healthy"
    assert health["token_valid"] is True
    assert health["expires_at"] == clock.now.add(seconds=3300).isoformat()
