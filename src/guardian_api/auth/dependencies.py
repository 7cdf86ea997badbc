"""FastAPI dependencies for authentication.

These dependencies can be used in route handlers to require a live Bungie
credential.

## Session id transport

The session id is looked up in this order; the first one present wins:

1. `Authorization: Bearer sid:<id>` (web client keeps the id in storage)
2. `session_id` cookie
3. `?sid=<id>` query parameter

The fallback cookie is only consulted when none of these is present.

## Usage

```python
from fastapi import Depends
from guardian_api.auth import LiveCredential, get_live_credential

@router.get("/me/profile")
async def profile(credential: LiveCredential = Depends(get_live_credential)):
    ...
```
"""

from __future__ import annotations

import logging

from fastapi import Depends, Request, Response

from guardian_api.auth.errors import Unauthenticated
from guardian_api.auth.manager import SessionManager
from guardian_api.auth.session import LiveCredential
from guardian_api.config import Settings, get_settings

logger = logging.getLogger(__name__)

SID_BEARER_PREFIX = "sid:"
SID_QUERY_PARAM = "sid"


def extract_session_id(request: Request, settings: Settings) -> str | None:
    """Find the session id on an inbound request."""
    scheme, _, value = request.headers.get("Authorization", "").partition(" ")
    value = value.strip()
    if scheme.lower() == "bearer" and value.startswith(SID_BEARER_PREFIX):
        session_id = value[len(SID_BEARER_PREFIX):]
        if session_id:
            return session_id

    session_id = request.cookies.get(settings.session_cookie_name)
    if session_id:
        return session_id

    return request.query_params.get(SID_QUERY_PARAM) or None


def set_session_cookie(response: Response, session_id: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session_id,
        max_age=settings.session_cookie_max_age_seconds,
        httponly=True,
        secure=settings.secure_cookies,
        samesite=settings.cookie_samesite,
        path="/",
    )


def set_fallback_cookie(response: Response, payload: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.fallback_cookie_name,
        value=payload,
        max_age=settings.session_cookie_max_age_seconds,
        httponly=True,
        secure=settings.secure_cookies,
        samesite=settings.cookie_samesite,
        path="/",
    )


def clear_auth_cookies(response: Response, settings: Settings) -> None:
    for key in (settings.session_cookie_name, settings.fallback_cookie_name):
        response.delete_cookie(
            key=key,
            path="/",
            httponly=True,
            secure=settings.secure_cookies,
            samesite=settings.cookie_samesite,
        )


def get_session_manager(request: Request) -> SessionManager:
    """The manager built once in the application lifespan."""
    return request.app.state.session_manager


async def get_live_credential(
    request: Request,
    response: Response,
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
) -> LiveCredential:
    """Get a live credential for the caller.

    Raises Unauthenticated (401) if there is no usable session.
    """
    session_id = extract_session_id(request, settings)
    if session_id:
        return await manager.resolve_session(session_id)

    fallback_payload = request.cookies.get(settings.fallback_cookie_name)
    if fallback_payload:
        credential = await manager.resolve_fallback(fallback_payload)
        if credential.session_id:
            # Promoted into the store: swap the fallback cookie for a session cookie
            set_session_cookie(response, credential.session_id, settings)
            response.delete_cookie(key=settings.fallback_cookie_name, path="/")
        return credential

    raise Unauthenticated("No session")


async def get_live_credential_optional(
    request: Request,
    response: Response,
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
) -> LiveCredential | None:
    """Get the caller's credential if logged in, or None."""
    try:
        return await get_live_credential(request, response, manager, settings)
    except Unauthenticated:
        return None
