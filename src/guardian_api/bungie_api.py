"""Bungie.net Platform API client.

Thin wrapper over https://www.bungie.net/Platform for the calls the service
makes on a user's behalf.

## Envelope

Every Platform response is wrapped:

```json
{"Response": {...}, "ErrorCode": 1, "ErrorStatus": "Success", "Message": "Ok"}
```

`ErrorCode` 1 means success; anything else is raised as `PlatformError`.

## Retries

Timeouts, network errors and 5xx answers are retried (3 attempts with
exponential backoff). A 401 is never retried: it means the access token is
no longer accepted and the user has to log in again.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

BUNGIE_PLATFORM_URL = "https://www.bungie.net/Platform"

# Profile components: 100 = Profiles, 200 = Characters
DEFAULT_PROFILE_COMPONENTS = (100, 200)


class PlatformError(Exception):
    """Base exception for Bungie Platform errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_status: str | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_status = error_status
        self.response_body = response_body


class PlatformAuthError(PlatformError):
    """Raised when Bungie rejects the access token (HTTP 401)."""


class PlatformUnavailable(PlatformError):
    """Raised for 5xx answers; retried."""


class BungieClient:
    """Client for authenticated Bungie Platform calls.

    Example:
        ```python
        client = BungieClient(api_key=settings.bungie_api_key)
        memberships = await client.get_memberships(credential.access_token)
        ```
    """

    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.25, min=0.25, max=2),
        retry=retry_if_exception_type(
            (httpx.TimeoutException, httpx.NetworkError, PlatformUnavailable)
        ),
        reraise=True,
    )
    async def get(self, path: str, access_token: str | None = None) -> Any:
        """GET a Platform path and return the unwrapped `Response` field.

        Args:
            path: Path below /Platform, e.g. "/User/GetMembershipsForCurrentUser/"
            access_token: User access token for authenticated endpoints

        Raises:
            PlatformAuthError: If Bungie rejects the token
            PlatformError: For other failures (after retries where applicable)
        """
        headers = {"X-API-Key": self.api_key, "Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        response = await self._get_client().get(
            f"{BUNGIE_PLATFORM_URL}{path}", headers=headers
        )

        if response.status_code == 401:
            raise PlatformAuthError(
                "Bungie rejected the access token",
                status_code=401,
                response_body=response.text,
            )
        if response.status_code >= 500:
            logger.warning(f"Bungie {response.status_code} for {path}")
            raise PlatformUnavailable(
                f"Bungie unavailable: {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )
        if response.status_code >= 400:
            raise PlatformError(
                f"Bungie request failed: {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )

        try:
            envelope = response.json()
        except ValueError as e:
            raise PlatformError(
                "Bungie returned a non-JSON response",
                status_code=response.status_code,
                response_body=response.text,
            ) from e

        error_code = envelope.get("ErrorCode", 1) if isinstance(envelope, dict) else None
        if error_code != 1:
            error_status = envelope.get("ErrorStatus") if isinstance(envelope, dict) else None
            raise PlatformError(
                f"Bungie error: {error_status or 'unexpected response'}",
                status_code=response.status_code,
                error_status=error_status,
                response_body=response.text,
            )

        return envelope.get("Response")

    async def get_memberships(self, access_token: str) -> dict[str, Any]:
        """Memberships linked to the token's Bungie.net account."""
        return await self.get("/User/GetMembershipsForCurrentUser/", access_token=access_token) or {}

    async def get_profile(
        self,
        membership_type: int,
        membership_id: str,
        access_token: str,
        components: tuple[int, ...] = DEFAULT_PROFILE_COMPONENTS,
    ) -> dict[str, Any]:
        """Destiny 2 profile for one membership."""
        component_list = ",".join(str(c) for c in components)
        return await self.get(
            f"/Destiny2/{membership_type}/Profile/{membership_id}/?components={component_list}",
            access_token=access_token,
        ) or {}


def primary_destiny_membership(memberships: dict[str, Any]) -> dict[str, Any] | None:
    """Pick the membership to use: the cross-save primary, else the first."""
    destiny_memberships = memberships.get("destinyMemberships") or []
    if not destiny_memberships:
        return None

    primary_id = memberships.get("primaryMembershipId")
    if primary_id:
        for membership in destiny_memberships:
            if str(membership.get("membershipId")) == str(primary_id):
                return membership

    return destiny_memberships[0]
