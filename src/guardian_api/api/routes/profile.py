"""Profile routes.

GET /api/me/profile returns a short summary of the signed-in user's
Destiny 2 profile. The first successful call also tells us the user's
membership id, which is backfilled onto the session.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from guardian_api.api.deps import get_bungie_client, get_profile_cache
from guardian_api.auth.dependencies import get_live_credential, get_session_manager
from guardian_api.auth.manager import SessionManager
from guardian_api.auth.session import LiveCredential
from guardian_api.bungie_api import BungieClient, PlatformError, primary_destiny_membership
from guardian_api.cache import ProfileCache

logger = logging.getLogger(__name__)

router = APIRouter()


class ProfileSummary(BaseModel):
    """Profile summary, serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    membership_id: str
    membership_type: int
    character_ids: list[str]
    highest_power: int


def membership_key(membership: dict[str, Any]) -> tuple[str, int]:
    """Return (membershipId, membershipType), rejecting incomplete entries."""
    try:
        return str(membership["membershipId"]), int(membership["membershipType"])
    except (KeyError, TypeError, ValueError) as e:
        raise PlatformError("Bungie returned a membership without id or type") from e


def summarize_profile(membership: dict[str, Any], profile: dict[str, Any]) -> ProfileSummary:
    """Reduce a profile response to ids and highest character power.

    Raises PlatformError when the payload does not have the expected shape.
    """
    membership_id, membership_type = membership_key(membership)
    try:
        characters = ((profile.get("characters") or {}).get("data") or {}).values()
        character_ids = ((profile.get("profile") or {}).get("data") or {}).get("characterIds") or []
        highest_power = max((int(c.get("light", 0)) for c in characters), default=0)
        character_ids = [str(c) for c in character_ids]
    except (AttributeError, TypeError, ValueError) as e:
        raise PlatformError("Unexpected profile payload from Bungie") from e

    return ProfileSummary(
        membership_id=membership_id,
        membership_type=membership_type,
        character_ids=character_ids,
        highest_power=highest_power,
    )


@router.get("/me/profile", response_model=ProfileSummary)
async def get_my_profile(
    credential: LiveCredential = Depends(get_live_credential),
    manager: SessionManager = Depends(get_session_manager),
    bungie: BungieClient = Depends(get_bungie_client),
    cache: ProfileCache = Depends(get_profile_cache),
) -> Any:
    """Get the current user's Destiny profile summary."""
    cache_key = f"profile:{credential.session_id}" if credential.session_id else None
    if cache_key:
        cached = await cache.get(cache_key)
        if cached:
            return cached

    memberships = await bungie.get_memberships(credential.access_token)
    membership = primary_destiny_membership(memberships)
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No Destiny memberships on this Bungie.net account",
        )

    membership_id, membership_type = membership_key(membership)
    if not credential.identity_resolved:
        await manager.backfill_identity(credential.session_id, membership_id)

    profile = await bungie.get_profile(
        membership_type,
        membership_id,
        credential.access_token,
    )
    summary = summarize_profile(membership, profile)

    if cache_key:
        await cache.set(cache_key, summary.model_dump(by_alias=True))

    return summary
