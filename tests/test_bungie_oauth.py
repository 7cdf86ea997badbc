"""Tests for the Bungie OAuth token client."""

import asyncio
import base64
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from guardian_api.auth.bungie import (
    BUNGIE_AUTHORIZE_URL,
    BUNGIE_TOKEN_URL,
    BungieOAuth,
    TokenSet,
)
from guardian_api.auth.errors import (
    MalformedUpstreamResponse,
    MissingCode,
    UpstreamAuthError,
    UpstreamTimeout,
)

TOKEN_BODY = {
    "access_token": "CO-access",
    "token_type": "Bearer",
    "expires_in": 3600,
    "refresh_token": "CP-refresh",
    "refresh_expires_in": 7776000,
    "membership_id": "4611686018400000001",
}


def make_oauth(handler, requests: list) -> BungieOAuth:
    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    return BungieOAuth(
        client_id="12345",
        client_secret="shh",
        api_key="api-key",
        redirect_uri="https://api.example.com/auth/callback",
        http_client=client,
    )


def form_of(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestAuthorizationUrl:
    """Tests for building the consent screen URL."""

    def test_contains_client_and_state(self):
        oauth = BungieOAuth("12345", "shh", "api-key", "https://api.example.com/auth/callback")
        url = oauth.get_authorization_url(state="%2Fdashboard")

        assert url.startswith(BUNGIE_AUTHORIZE_URL + "?")
        params = parse_qs(urlparse(url).query)
        assert params["client_id"] == ["12345"]
        assert params["response_type"] == ["code"]
        assert params["redirect_uri"] == ["https://api.example.com/auth/callback"]
        assert params["state"] == ["%2Fdashboard"]


class TestExchangeCode:
    """Tests for the authorization code grant."""

    async def test_success(self):
        """Test a successful exchange returns a TokenSet."""
        requests = []
        oauth = make_oauth(lambda r: httpx.Response(200, json=TOKEN_BODY), requests)

        tokens = await oauth.exchange_code("abc")

        assert tokens == TokenSet(
            token_type="Bearer",
            access_token="CO-access",
            expires_in=3600,
            refresh_token="CP-refresh",
            refresh_expires_in=7776000,
            membership_id="4611686018400000001",
        )

    async def test_request_shape(self):
        """Test Basic client auth, API key header and form body."""
        requests = []
        oauth = make_oauth(lambda r: httpx.Response(200, json=TOKEN_BODY), requests)

        await oauth.exchange_code("abc")

        assert len(requests) == 1
        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == BUNGIE_TOKEN_URL
        assert request.headers["X-API-Key"] == "api-key"
        expected_auth = base64.b64encode(b"12345:shh").decode()
        assert request.headers["Authorization"] == f"Basic {expected_auth}"
        assert form_of(request) == {
            "grant_type": "authorization_code",
            "code": "abc",
            "redirect_uri": "https://api.example.com/auth/callback",
        }

    async def test_numeric_membership_id(self):
        """Test that a numeric membership id is normalized to a string."""
        body = dict(TOKEN_BODY, membership_id=4611686018400000001)
        oauth = make_oauth(lambda r: httpx.Response(200, json=body), [])

        tokens = await oauth.exchange_code("abc")

        assert tokens.membership_id == "4611686018400000001"

    async def test_missing_code_makes_no_request(self):
        """Test that an empty code fails before touching the network."""
        requests = []
        oauth = make_oauth(lambda r: httpx.Response(200, json=TOKEN_BODY), requests)

        with pytest.raises(MissingCode):
            await oauth.exchange_code("")

        assert requests == []

    async def test_rejected_exchange(self):
        """Test that a 400 carries Bungie's status and body, with one attempt."""
        requests = []
        oauth = make_oauth(
            lambda r: httpx.Response(400, json={"error": "invalid_grant"}), requests
        )

        with pytest.raises(UpstreamAuthError) as exc_info:
            await oauth.exchange_code("used-code")

        assert exc_info.value.status == 400
        assert "invalid_grant" in exc_info.value.body
        assert len(requests) == 1

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        oauth = make_oauth(handler, [])

        with pytest.raises(UpstreamTimeout):
            await oauth.exchange_code("abc")

    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        oauth = make_oauth(handler, [])

        with pytest.raises(UpstreamAuthError) as exc_info:
            await oauth.exchange_code("abc")

        assert exc_info.value.status is None

    async def test_non_json_body(self):
        oauth = make_oauth(lambda r: httpx.Response(200, text="<html>oops</html>"), [])

        with pytest.raises(MalformedUpstreamResponse):
            await oauth.exchange_code("abc")

    @pytest.mark.parametrize(
        "body",
        [
            {k: v for k, v in TOKEN_BODY.items() if k != "access_token"},
            dict(TOKEN_BODY, access_token=""),
            dict(TOKEN_BODY, expires_in="3600"),
            dict(TOKEN_BODY, expires_in=0),
            dict(TOKEN_BODY, expires_in=0.5),
            [TOKEN_BODY],
        ],
    )
    async def test_schema_violations(self, body):
        """Test that responses not matching the token schema are rejected."""
        oauth = make_oauth(lambda r: httpx.Response(200, content=json.dumps(body)), [])

        with pytest.raises(MalformedUpstreamResponse):
            await oauth.exchange_code("abc")

    async def test_cancellation_propagates(self):
        """Test that cancelling the exchange is not turned into an auth error."""
        async def handler(request):
            await asyncio.sleep(10)
            return httpx.Response(200, json=TOKEN_BODY)

        oauth = make_oauth(handler, [])
        task = asyncio.create_task(oauth.exchange_code("abc"))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestRefreshAccessToken:
    """Tests for the refresh token grant."""

    async def test_refresh_request(self):
        requests = []
        oauth = make_oauth(lambda r: httpx.Response(200, json=TOKEN_BODY), requests)

        tokens = await oauth.refresh_access_token("CP-refresh")

        assert tokens.access_token == "CO-access"
        assert form_of(requests[0]) == {
            "grant_type": "refresh_token",
            "refresh_token": "CP-refresh",
        }

    async def test_refresh_without_rotation(self):
        """Test a response that omits the refresh token."""
        body = {"access_token": "CO-new", "token_type": "Bearer", "expires_in": 3600}
        oauth = make_oauth(lambda r: httpx.Response(200, json=body), [])

        tokens = await oauth.refresh_access_token("CP-refresh")

        assert tokens.refresh_token is None
        assert tokens.membership_id is None

    async def test_refresh_rejected(self):
        oauth = make_oauth(lambda r: httpx.Response(401, text="expired"), [])

        with pytest.raises(UpstreamAuthError) as exc_info:
            await oauth.refresh_access_token("CP-refresh")

        assert exc_info.value.status == 401

    async def test_sub_second_lifetime_rejected(self):
        body = dict(TOKEN_BODY, expires_in=0.9)
        oauth = make_oauth(lambda r: httpx.Response(200, json=body), [])

        with pytest.raises(MalformedUpstreamResponse):
            await oauth.refresh_access_token("CP-refresh")

    async def test_fractional_lifetime_truncated(self):
        body = dict(TOKEN_BODY, expires_in=1.5)
        oauth = make_oauth(lambda r: httpx.Response(200, json=body), [])

        tokens = await oauth.refresh_access_token("CP-refresh")

        assert tokens.expires_in == 1

    def test_token_set_repr_hides_tokens(self):
        tokens = TokenSet("Bearer", "CO-secret", 3600, refresh_token="CP-secret")
        assert "CO-secret" not in repr(tokens)
        assert "CP-secret" not in repr(tokens)
