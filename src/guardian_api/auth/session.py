"""Session data carried through the authentication core.

`Session` mirrors one row of the sessions table with tokens decrypted.
`LiveCredential` is what route handlers receive: a usable access token and
enough context to backfill identity or rotate transport cookies. Neither is
ever serialized into a response.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable

from guardian_api.database.models import UNRESOLVED_IDENTITY

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite drops tzinfo) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class Session:
    """One authenticated user's standing Bungie credential."""

    id: str
    identity_id: str
    access_token: str = field(repr=False)
    refresh_token: str | None = field(repr=False)
    expires_at: datetime
    created_at: datetime
    version: int = 1

    @property
    def identity_resolved(self) -> bool:
        return self.identity_id != UNRESOLVED_IDENTITY

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def needs_refresh(self, now: datetime, threshold: timedelta) -> bool:
        """True once `now` is inside the refresh window before expiry."""
        return now >= self.expires_at - threshold

    def with_tokens(
        self,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime,
    ) -> Session:
        """Copy with a new token pair; version advances with the write."""
        return replace(
            self,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            version=self.version + 1,
        )


@dataclass(frozen=True)
class LiveCredential:
    """A credential ready for a downstream Bungie call."""

    access_token: str = field(repr=False)
    expires_at: datetime
    identity_id: str = UNRESOLVED_IDENTITY
    session_id: str | None = None
    from_fallback: bool = False

    @property
    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    @property
    def identity_resolved(self) -> bool:
        return self.identity_id != UNRESOLVED_IDENTITY

    @classmethod
    def from_session(cls, session: Session) -> LiveCredential:
        return cls(
            access_token=session.access_token,
            expires_at=session.expires_at,
            identity_id=session.identity_id,
            session_id=session.id,
        )
