"""FastAPI application factory.

Creates and configures the FastAPI application with all routes and middleware.

## Usage

```python
from guardian_api.api import create_app

app = create_app()

# Run with uvicorn
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
```

## Components

The session store, session manager and HTTP clients are built once in the
lifespan and kept on `app.state`; request handlers reach them through the
dependencies in `guardian_api.auth.dependencies` and `guardian_api.api.deps`.
Tests pass pre-built `AppComponents` to `create_app()` instead.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from guardian_api.api.errors import register_exception_handlers
from guardian_api.auth.bungie import BungieOAuth
from guardian_api.auth.errors import StoreUnavailable
from guardian_api.auth.fallback import FallbackChannel
from guardian_api.auth.manager import SessionManager
from guardian_api.auth.store import SessionStore, SqlSessionStore
from guardian_api.bungie_api import BungieClient
from guardian_api.cache import ProfileCache
from guardian_api.config import Settings, get_settings
from guardian_api.database.connection import Database
from guardian_api.database.encryption import TokenCipher
from guardian_api.log_config import configure_logging

logger = logging.getLogger(__name__)


@dataclass
class AppComponents:
    """Long-lived collaborators shared by all requests."""

    session_manager: SessionManager
    store: SessionStore
    bungie: BungieClient
    profile_cache: ProfileCache
    database: Database | None = None
    http_client: httpx.AsyncClient | None = None


async def build_components(settings: Settings) -> AppComponents:
    """Wire the production collaborators from settings."""
    if not settings.bungie_oauth_configured:
        logger.warning(
            "Bungie OAuth not configured. Set BUNGIE_CLIENT_ID, "
            "BUNGIE_CLIENT_SECRET and BUNGIE_API_KEY environment variables."
        )

    database = Database(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.database_echo,
    )
    await database.init()

    cipher = TokenCipher.from_settings(settings)
    http_client = httpx.AsyncClient(timeout=settings.bungie_http_timeout_seconds)

    exchanger = BungieOAuth(
        client_id=settings.bungie_client_id or "",
        client_secret=settings.bungie_client_secret or "",
        api_key=settings.bungie_api_key or "",
        redirect_uri=settings.bungie_redirect_uri,
        timeout=settings.bungie_http_timeout_seconds,
        http_client=http_client,
    )
    store = SqlSessionStore(database, cipher)
    manager = SessionManager(
        exchanger,
        store,
        FallbackChannel(cipher),
        default_next_path=settings.default_next_path,
        refresh_threshold=timedelta(seconds=settings.refresh_threshold_seconds),
    )

    return AppComponents(
        session_manager=manager,
        store=store,
        bungie=BungieClient(
            api_key=settings.bungie_api_key or "",
            timeout=settings.bungie_http_timeout_seconds,
            http_client=http_client,
        ),
        profile_cache=ProfileCache.from_url(
            settings.redis_url, settings.profile_cache_ttl_seconds
        ),
        database=database,
        http_client=http_client,
    )


async def close_components(components: AppComponents) -> None:
    await components.profile_cache.close()
    if components.http_client is not None:
        await components.http_client.aclose()
    if components.database is not None:
        await components.database.close()


def create_app(
    settings: Settings | None = None,
    components: AppComponents | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use (default: from environment)
        components: Pre-built collaborators; when given, the lifespan
            neither builds nor closes them

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Build shared components on startup, release them on shutdown."""
        configure_logging(settings.log_level)
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")

        owned = components is None
        active = await build_components(settings) if owned else components

        app.state.session_manager = active.session_manager
        app.state.session_store = active.store
        app.state.bungie = active.bungie
        app.state.profile_cache = active.profile_cache

        yield

        logger.info("Shutting down")
        if owned:
            await close_components(active)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Bungie.net sign-in and authenticated Platform proxy",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type"],
    )

    register_exception_handlers(app)

    # Include routers
    from guardian_api.api.routes import auth, profile

    app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
    app.include_router(profile.router, prefix="/api", tags=["Profile"])

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        database = "ok"
        try:
            await app.state.session_store.ping()
        except StoreUnavailable:
            database = "unavailable"
        return {
            "status": "healthy" if database == "ok" else "degraded",
            "version": settings.app_version,
            "database": database,
        }

    return app
