"""Exception handlers that turn auth errors into HTTP responses.

Response body:

```json
{"error": "upstream_auth_error", "detail": "Bungie token exchange failed (400)",
 "upstream_status": 400, "upstream_body": "{...}"}
```

Unauthenticated responses also carry `login_url`, which sends the user back
to the page they asked for after logging in.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from guardian_api.auth.errors import AuthError, Unauthenticated, UpstreamAuthError
from guardian_api.bungie_api import PlatformAuthError, PlatformError

logger = logging.getLogger(__name__)

# Provider error bodies are echoed for diagnostics, but not without bound
MAX_UPSTREAM_BODY = 2000


def login_url_for(request: Request) -> str:
    """Login URL that returns the user to the current path and query."""
    next_path = request.url.path
    if request.url.query:
        next_path = f"{next_path}?{request.url.query}"
    return f"/auth/login?{urlencode({'next': next_path})}"


def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers for AuthError and Bungie Platform errors."""

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        content: dict = {"error": exc.kind.value, "detail": exc.message}
        headers = None

        if isinstance(exc, Unauthenticated):
            content["login_url"] = login_url_for(request)
            headers = {"WWW-Authenticate": "Bearer"}
        elif isinstance(exc, UpstreamAuthError):
            content["upstream_status"] = exc.status
            content["upstream_body"] = exc.body[:MAX_UPSTREAM_BODY]

        if exc.status_code >= 500:
            logger.warning(f"{request.method} {request.url.path} -> {exc.kind.value}: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.kind.value}")

        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(PlatformError)
    async def platform_error_handler(request: Request, exc: PlatformError) -> JSONResponse:
        if isinstance(exc, PlatformAuthError):
            # Bungie rejected the access token: the session is effectively over
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={
                    "error": Unauthenticated.kind.value,
                    "detail": "Bungie rejected the session credential",
                    "login_url": login_url_for(request),
                },
                headers={"WWW-Authenticate": "Bearer"},
            )

        logger.warning(f"{request.method} {request.url.path} -> Bungie error {exc.status_code}")
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "error": "platform_error",
                "detail": str(exc),
                "upstream_status": exc.status_code,
            },
        )
