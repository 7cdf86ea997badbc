"""Fallback credential carrier for session store outages.

When the sessions table cannot be written during the OAuth callback, the
freshly exchanged tokens are handed to the browser in an encrypted,
HTTP-only cookie instead, so a database outage never turns into a failed
login.

The payload is a Fernet token wrapping:

```json
{"access_token": "...", "refresh_token": "...", "expires_in": 3600, "issued_at": 1700000000}
```

Fernet is authenticated encryption: the browser can neither read the
tokens nor alter them without `recover()` rejecting the payload.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from guardian_api.auth.bungie import TokenSet
from guardian_api.auth.session import Clock, utcnow
from guardian_api.database.encryption import TokenCipher

logger = logging.getLogger(__name__)


class _FallbackPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_in: int = Field(gt=0)
    issued_at: int = Field(ge=0)


@dataclass(frozen=True)
class PendingToken:
    """A token pair carried outside the session store."""

    access_token: str = field(repr=False)
    refresh_token: str | None = field(repr=False)
    expires_in: int
    issued_at: datetime

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.expires_in)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def remaining_seconds(self, now: datetime) -> int:
        return max(0, int((self.expires_at - now).total_seconds()))


@dataclass(frozen=True)
class Malformed:
    """Result of recovering a payload that is not a valid fallback token."""

    reason: str


class FallbackChannel:
    """Serializes token sets into opaque transport payloads and back."""

    def __init__(self, cipher: TokenCipher, clock: Clock = utcnow):
        self._cipher = cipher
        self._clock = clock

    def emit(self, tokens: TokenSet) -> str:
        """Wrap a token set into an opaque payload."""
        payload = _FallbackPayload(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_in=tokens.expires_in,
            issued_at=int(self._clock().timestamp()),
        )
        return self._cipher.encrypt(payload.model_dump_json())

    def recover(self, payload: str | None) -> PendingToken | Malformed:
        """Unwrap a payload produced by `emit()`.

        Never raises: anything that is not an intact payload comes back as
        `Malformed`.
        """
        if not payload:
            return Malformed("empty payload")

        try:
            plaintext = self._cipher.decrypt(payload)
        except ValueError:
            return Malformed("payload failed authentication")

        try:
            data = _FallbackPayload.model_validate(json.loads(plaintext))
        except (ValueError, ValidationError) as e:
            logger.debug(f"Fallback payload rejected: {e}")
            return Malformed("payload has an unexpected shape")

        return PendingToken(
            access_token=data.access_token,
            refresh_token=data.refresh_token,
            expires_in=data.expires_in,
            issued_at=datetime.fromtimestamp(data.issued_at, tz=timezone.utc),
        )
