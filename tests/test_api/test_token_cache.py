"""Tests for the bearer token cache."""

import httpx
import pytest
import respx

from guesty_sync.api.token_cache import AccessToken, TokenCache
from guesty_sync.config import Settings
from guesty_sync.errors import AuthError

TOKEN_URL = "https://api.test.guesty.com/api/v2/oauth2/token"


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token_cache(test_settings: Settings, clock: FakeClock) -> TokenCache:
    return TokenCache(test_settings, clock=clock)


def _token_response(token: str = "tok-1", expires_in: object = 86400) -> httpx.Response:
    return httpx.Response(
        200,
        json={"token_type": "Bearer", "access_token": token, "expires_in": expires_in},
    )


class TestAccessToken:
    def test_valid_before_expiry(self) -> None:
        token = AccessToken(value="t", expires_at=100.0)
        assert token.is_valid(99.9)
        assert not token.is_valid(100.0)


class TestGetToken:
    @respx.mock
    async def test_requests_token_with_client_credentials(self, token_cache: TokenCache) -> None:
        route = respx.post(TOKEN_URL).mock(return_value=_token_response())

        assert await token_cache.get_token() == "tok-1"

        body = route.calls[0].request.content.decode()
        assert "grant_type=client_credentials" in body
        assert "client_id=client-123" in body
        assert "client_secret=secret-456" in body
        await token_cache.close()

    @respx.mock
    async def test_cached_token_reused(self, token_cache: TokenCache, clock: FakeClock) -> None:
        route = respx.post(TOKEN_URL).mock(return_value=_token_response())

        await token_cache.get_token()
        clock.now += 3600
        assert await token_cache.get_token() == "tok-1"
        assert route.call_count == 1
        await token_cache.close()

    @respx.mock
    async def test_refreshes_after_guarded_expiry(
        self, token_cache: TokenCache, clock: FakeClock
    ) -> None:
        route = respx.post(TOKEN_URL).mock(
            side_effect=[_token_response("tok-1"), _token_response("tok-2")]
        )

        assert await token_cache.get_token() == "tok-1"
        # 86400s lifetime minus the 3600s guard
        clock.now += 82800
        assert await token_cache.get_token() == "tok-2"
        assert route.call_count == 2
        await token_cache.close()

    @respx.mock
    async def test_invalidate_forces_refresh(self, token_cache: TokenCache) -> None:
        route = respx.post(TOKEN_URL).mock(
            side_effect=[_token_response("tok-1"), _token_response("tok-2")]
        )

        await token_cache.get_token()
        token_cache.invalidate()
        assert await token_cache.get_token() == "tok-2"
        assert route.call_count == 2
        await token_cache.close()

    async def test_missing_credentials(self, clock: FakeClock) -> None:
        cache = TokenCache(Settings(client_id="", client_secret=""), clock=clock)
        with pytest.raises(AuthError, match="not configured"):
            await cache.get_token()

    @respx.mock
    async def test_rejected_credentials(self, token_cache: TokenCache) -> None:
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(401, json={"error": "invalid"}))
        with pytest.raises(AuthError, match="401"):
            await token_cache.get_token()
        await token_cache.close()

    @respx.mock
    async def test_transport_error(self, token_cache: TokenCache) -> None:
        respx.post(TOKEN_URL).mock(side_effect=httpx.ConnectError("connection refused"))
        with pytest.raises(AuthError, match="Token request failed"):
            await token_cache.get_token()
        await token_cache.close()

    @respx.mock
    async def test_body_without_token(self, token_cache: TokenCache) -> None:
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json={"expires_in": 60}))
        with pytest.raises(AuthError, match="no access_token"):
            await token_cache.get_token()
        await token_cache.close()

    @respx.mock
    async def test_non_json_body(self, token_cache: TokenCache) -> None:
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(AuthError, match="not valid JSON"):
            await token_cache.get_token()
        await token_cache.close()

    @respx.mock
    async def test_failure_caches_nothing(self, token_cache: TokenCache) -> None:
        route = respx.post(TOKEN_URL).mock(
            side_effect=[httpx.Response(503), _token_response("tok-2")]
        )

        with pytest.raises(AuthError):
            await token_cache.get_token()
        assert await token_cache.get_token() == "tok-2"
        assert route.call_count == 2
        await token_cache.close()


class TestCacheTtl:
    def test_guard_subtracted(self, token_cache: TokenCache) -> None:
        assert token_cache._cache_ttl(86400) == 82800

    def test_short_lifetime_uses_half(self, token_cache: TokenCache) -> None:
        assert token_cache._cache_ttl(3000) == 1500

    @pytest.mark.parametrize("expires_in", [None, "soon", 0, -5, float("nan")])
    def test_unusable_lifetime_falls_back(
        self, token_cache: TokenCache, expires_in: object
    ) -> None:
        assert token_cache._cache_ttl(expires_in) == 82800

    def test_numeric_string_accepted(self, token_cache: TokenCache) -> None:
        assert token_cache._cache_ttl("7200") == 3600
