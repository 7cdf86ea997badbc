"""Bungie.net OAuth token exchange.

Implements the OAuth 2.0 authorization code flow against Bungie.net for a
confidential client.

## Required Setup

1. Register an application at https://www.bungie.net/en/Application
2. Choose OAuth client type "Confidential"
3. Set the redirect URL to the service's /auth/callback endpoint
4. Set BUNGIE_CLIENT_ID, BUNGIE_CLIENT_SECRET and BUNGIE_API_KEY

## OAuth Endpoints

- Authorization: https://www.bungie.net/en/OAuth/Authorize
- Token: https://www.bungie.net/Platform/App/OAuth/Token/

The token endpoint takes HTTP Basic client authentication plus the
application's X-API-Key header. Token responses look like:

```json
{
  "access_token": "CO...",
  "token_type": "Bearer",
  "expires_in": 3600,
  "refresh_token": "CP...",
  "refresh_expires_in": 7776000,
  "membership_id": "4611686018400000000"
}
```

## Retry Policy

Neither request is retried here. An authorization code is single-use, so a
second attempt after a lost response would present a consumed code. Refresh
is best-effort: the caller keeps the current credential when it fails.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from guardian_api.auth.errors import (
    MalformedUpstreamResponse,
    MissingCode,
    UpstreamAuthError,
    UpstreamTimeout,
)

logger = logging.getLogger(__name__)

BUNGIE_AUTHORIZE_URL = "https://www.bungie.net/en/OAuth/Authorize"
BUNGIE_TOKEN_URL = "https://www.bungie.net/Platform/App/OAuth/Token/"


class TokenResponse(BaseModel):
    """Schema of a Bungie token endpoint response."""

    model_config = ConfigDict(extra="ignore")

    token_type: str
    access_token: str = Field(min_length=1)
    # Sub-second lifetimes would truncate to an expiry of "now"
    expires_in: float = Field(ge=1, strict=True)
    refresh_token: str | None = None
    refresh_expires_in: float | None = None
    membership_id: str | int | None = None


@dataclass(frozen=True)
class TokenSet:
    """Tokens issued by one grant.

    `expires_in` is relative; callers convert it to an absolute expiry as
    soon as the response is received.
    """

    token_type: str
    access_token: str
    expires_in: int
    refresh_token: str | None = None
    refresh_expires_in: int | None = None
    membership_id: str | None = None

    @classmethod
    def from_response(cls, response: TokenResponse) -> TokenSet:
        membership_id = response.membership_id
        return cls(
            token_type=response.token_type,
            access_token=response.access_token,
            expires_in=int(response.expires_in),
            refresh_token=response.refresh_token or None,
            refresh_expires_in=(
                int(response.refresh_expires_in)
                if response.refresh_expires_in is not None
                else None
            ),
            membership_id=str(membership_id) if membership_id else None,
        )

    def __repr__(self) -> str:
        # Keep credentials out of logs and tracebacks
        return (
            f"TokenSet(token_type={self.token_type!r}, expires_in={self.expires_in}, "
            f"has_refresh_token={self.refresh_token is not None}, "
            f"membership_id={self.membership_id!r})"
        )


class BungieOAuth:
    """Bungie.net OAuth 2.0 client.

    Example:
        ```python
        oauth = BungieOAuth(client_id, client_secret, api_key, redirect_uri)

        # Generate authorization URL
        auth_url = oauth.get_authorization_url(state="%2Fdashboard")

        # Handle callback
        tokens = await oauth.exchange_code(code)

        # Later, near expiry
        tokens = await oauth.refresh_access_token(tokens.refresh_token)
        ```
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        api_key: str,
        redirect_uri: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the Bungie OAuth client.

        Args:
            client_id: Bungie application OAuth client ID
            client_secret: Bungie application OAuth client secret
            api_key: Bungie application API key
            redirect_uri: Registered OAuth redirect URL
            timeout: Per-request timeout in seconds
            http_client: Shared client (a short-lived one is used otherwise)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_key = api_key
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._http_client = http_client

    def get_authorization_url(self, state: str) -> str:
        """Generate the Bungie authorization URL.

        Args:
            state: Opaque value Bungie echoes back to the callback

        Returns:
            URL to redirect the user to
        """
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "state": state,
        }
        return f"{BUNGIE_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenSet:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the callback

        Returns:
            TokenSet for the new grant

        Raises:
            MissingCode: If code is empty (no request is made)
            UpstreamAuthError: If Bungie rejects the exchange
            UpstreamTimeout: If Bungie does not answer in time
            MalformedUpstreamResponse: If the response fails validation
        """
        if not code:
            raise MissingCode()

        try:
            return await self._token_request(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                }
            )
        except asyncio.CancelledError:
            logger.warning(
                "Code exchange cancelled; the authorization code may already be consumed"
            )
            raise

    async def refresh_access_token(self, refresh_token: str) -> TokenSet:
        """Exchange a refresh token for a new access token.

        Args:
            refresh_token: The session's refresh token

        Returns:
            TokenSet for the new grant (refresh_token is None when Bungie
            did not rotate it)

        Raises:
            UpstreamAuthError, UpstreamTimeout, MalformedUpstreamResponse
        """
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }
        )

    async def _token_request(self, form: dict[str, str]) -> TokenSet:
        grant_type = form["grant_type"]
        try:
            response = await self._post(form)
        except httpx.TimeoutException as e:
            logger.warning(f"Token request ({grant_type}) timed out: {e!r}")
            raise UpstreamTimeout() from e
        except httpx.HTTPError as e:
            logger.error(f"Token request ({grant_type}) failed: {e!r}")
            raise UpstreamAuthError(status=None, body=str(e)) from e

        if not response.is_success:
            logger.error(
                f"Token request ({grant_type}) rejected: "
                f"{response.status_code} {response.text[:500]}"
            )
            raise UpstreamAuthError(status=response.status_code, body=response.text)

        try:
            payload = TokenResponse.model_validate(response.json())
        except ValueError as e:
            # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
            detail = e.errors()[0]["msg"] if isinstance(e, ValidationError) else "not JSON"
            logger.error(f"Malformed token response ({grant_type}): {detail}")
            raise MalformedUpstreamResponse(
                f"Malformed token response from Bungie: {detail}"
            ) from e

        return TokenSet.from_response(payload)

    async def _post(self, form: dict[str, str]) -> httpx.Response:
        headers = {
            "X-API-Key": self.api_key,
            "Content-Type": "application/x-www-form-urlencoded",
        }
        auth = httpx.BasicAuth(self.client_id, self.client_secret)

        if self._http_client is not None:
            return await self._http_client.post(
                BUNGIE_TOKEN_URL,
                data=form,
                headers=headers,
                auth=auth,
                timeout=self.timeout,
            )

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(
                BUNGIE_TOKEN_URL, data=form, headers=headers, auth=auth
            )
