"""FastAPI dependencies for the shared Bungie client and profile cache."""

from __future__ import annotations

from fastapi import Request

from guardian_api.bungie_api import BungieClient
from guardian_api.cache import ProfileCache


def get_bungie_client(request: Request) -> BungieClient:
    return request.app.state.bungie


def get_profile_cache(request: Request) -> ProfileCache:
    return request.app.state.profile_cache
