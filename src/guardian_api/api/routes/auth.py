"""Authentication routes.

Handles the Bungie.net OAuth login flow and session transport.

## OAuth Flow

1. GET /auth/login?next=/path - Redirect to the Bungie consent screen
2. GET /auth/callback - Exchange the code, create the session, redirect to
   FRONTEND_URL + next with `sid` appended for client-side capture
3. POST /auth/logout - Clear session cookies
4. GET /auth/me - Session status

## Session Transport

The session id is set as an HTTP-only cookie and appended to the redirect
as `?sid=` so the web client can send it as `Authorization: Bearer sid:<id>`
where third-party cookies are blocked. When the session store is down the
callback sets an encrypted fallback cookie instead and omits `sid`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from guardian_api.auth.dependencies import (
    SID_QUERY_PARAM,
    clear_auth_cookies,
    get_live_credential_optional,
    get_session_manager,
    set_fallback_cookie,
    set_session_cookie,
)
from guardian_api.auth.manager import SessionManager
from guardian_api.auth.session import LiveCredential
from guardian_api.config import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


class AuthStatusResponse(BaseModel):
    """Authentication status response."""

    authenticated: bool
    identity_id: str | None = None
    expires_at: datetime | None = None
    durable: bool = False


def frontend_redirect_url(frontend_url: str, next_path: str, session_id: str | None) -> str:
    """Join the frontend base and `next_path`, appending `sid` when present.

    The path and query of `next_path` are kept exactly as given.
    """
    url, hash_sign, fragment = f"{frontend_url.rstrip('/')}{next_path}".partition("#")
    if session_id:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}{urlencode({SID_QUERY_PARAM: session_id})}"
    return f"{url}{hash_sign}{fragment}"


@router.get("/login")
async def login(
    next_path: str | None = Query(default=None, alias="next"),
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """Initiate Bungie OAuth login.

    Redirects the user to Bungie's consent screen. `next` must be a local
    path; anything else is replaced with the default page.
    """
    if not settings.bungie_oauth_configured:
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="Bungie OAuth not configured",
        )

    return RedirectResponse(
        url=manager.build_login_url(next_path),
        status_code=status.HTTP_302_FOUND,
    )


@router.get("/callback")
async def callback(
    code: str | None = None,
    state: str | None = None,
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """Handle the Bungie OAuth callback.

    Errors are rendered by the AuthError handler: missing code is a 400,
    a rejected exchange a 502 with Bungie's status and body, a timeout 504.
    """
    result = await manager.handle_callback(code, state)

    redirect = RedirectResponse(
        url=frontend_redirect_url(
            settings.frontend_url, result.redirect_target, result.session_id
        ),
        status_code=status.HTTP_302_FOUND,
    )

    if result.session_id:
        set_session_cookie(redirect, result.session_id, settings)
        redirect.delete_cookie(key=settings.fallback_cookie_name, path="/")
        logger.info(f"Login complete, session {result.session_id}")
    else:
        set_fallback_cookie(redirect, result.fallback_payload or "", settings)
        logger.warning("Login complete without a durable session (fallback cookie issued)")

    return redirect


@router.post("/logout")
async def logout(
    response: Response,
    settings: Settings = Depends(get_settings),
) -> dict:
    """Log out the current user.

    Clears the session and fallback cookies. The session row is left in
    place; expiry and retention are handled elsewhere.
    """
    clear_auth_cookies(response, settings)
    return {"status": "logged_out"}


@router.get("/me", response_model=AuthStatusResponse)
async def get_auth_status(
    credential: LiveCredential | None = Depends(get_live_credential_optional),
) -> AuthStatusResponse:
    """Get the current authentication status."""
    if credential is None:
        return AuthStatusResponse(authenticated=False)

    return AuthStatusResponse(
        authenticated=True,
        identity_id=credential.identity_id if credential.identity_resolved else None,
        expires_at=credential.expires_at,
        durable=credential.session_id is not None,
    )
