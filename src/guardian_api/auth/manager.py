"""Session manager: login callback, session resolution and token refresh.

## Login

```
/auth/login?next=/dashboard
  -> Bungie consent (state = url-encoded next)
  -> /auth/callback?code=...&state=...
  -> exchange code -> insert session ---------> session id
                           |
                           +-- store down ---> fallback payload
```

## Established session, on each request

| State      | Condition                                  | Action             |
|------------|--------------------------------------------|--------------------|
| Fresh      | now < expires_at - threshold                | none               |
| NearExpiry | expires_at - threshold <= now < expires_at  | refresh, persist   |
| Expired    | now >= expires_at                           | store reports none |

A failed refresh is not an error for the current request: the existing
credential is returned and Bungie's 401 on the downstream call is the
authoritative signal that the user must log in again.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from urllib.parse import quote, unquote

from guardian_api.auth.bungie import BungieOAuth
from guardian_api.auth.errors import (
    AuthError,
    InvalidReturnState,
    MissingCode,
    StoreUnavailable,
    Unauthenticated,
)
from guardian_api.auth.fallback import FallbackChannel, Malformed
from guardian_api.auth.session import Clock, LiveCredential, Session, utcnow
from guardian_api.auth.store import SessionStore
from guardian_api.database.models import UNRESOLVED_IDENTITY

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_THRESHOLD = timedelta(seconds=60)

_FORBIDDEN_PATH_CHARS = frozenset("\\\r\n\t")


def validate_next_path(value: str | None) -> str:
    """Return `value` if it is a local path with a single leading slash.

    Raises:
        InvalidReturnState: For absolute URLs, protocol-relative `//host`
            paths, backslash tricks and control characters.
    """
    if (
        not value
        or not value.startswith("/")
        or value.startswith("//")
        or any(ch in _FORBIDDEN_PATH_CHARS for ch in value)
    ):
        raise InvalidReturnState(value or "")
    return value


def grant_digest(access_token: str) -> str:
    """Stable key for one grant, safe to store in clear."""
    return hashlib.sha256(access_token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CallbackResult:
    """Outcome of a successful authorization code exchange.

    Exactly one of `session_id` and `fallback_payload` is set.
    """

    redirect_target: str
    identity_id: str
    session_id: str | None = None
    fallback_payload: str | None = None

    @property
    def durable(self) -> bool:
        return self.session_id is not None


class SessionManager:
    """Orchestrates token exchange, session persistence and refresh."""

    def __init__(
        self,
        exchanger: BungieOAuth,
        store: SessionStore,
        fallback: FallbackChannel,
        *,
        default_next_path: str = "/dashboard",
        refresh_threshold: timedelta = DEFAULT_REFRESH_THRESHOLD,
        clock: Clock = utcnow,
    ):
        self._exchanger = exchanger
        self._store = store
        self._fallback = fallback
        self.default_next_path = validate_next_path(default_next_path)
        self.refresh_threshold = refresh_threshold
        self._clock = clock

    # Return destinations

    def safe_next_path(self, value: str | None) -> str:
        """Validate a caller-supplied destination, falling back to the default."""
        try:
            return validate_next_path(value)
        except InvalidReturnState as e:
            if value:
                logger.info(f"Replacing return destination {e.value!r} with default")
            return self.default_next_path

    def build_login_url(self, next_path: str | None = None) -> str:
        """Bungie authorization URL that round-trips `next_path` as state."""
        state = quote(self.safe_next_path(next_path), safe="")
        return self._exchanger.get_authorization_url(state=state)

    def decode_state(self, state: str | None) -> str:
        """Recover the return destination from the echoed OAuth state."""
        return self.safe_next_path(unquote(state) if state else None)

    # Login

    async def handle_callback(
        self, code: str | None, state: str | None = None
    ) -> CallbackResult:
        """Exchange the authorization code and persist the resulting session.

        Raises:
            MissingCode: Before any network call when `code` is empty
            UpstreamAuthError, UpstreamTimeout, MalformedUpstreamResponse:
                From the exchange, unchanged; no session is created
        """
        redirect_target = self.decode_state(state)
        if not code:
            raise MissingCode()

        tokens = await self._exchanger.exchange_code(code)
        identity_id = tokens.membership_id or UNRESOLVED_IDENTITY

        try:
            session_id = await self._store.insert(
                identity_id,
                tokens.access_token,
                tokens.refresh_token,
                tokens.expires_in,
            )
        except StoreUnavailable:
            logger.error("Session store unavailable at login; issuing fallback credential")
            return CallbackResult(
                redirect_target=redirect_target,
                identity_id=identity_id,
                fallback_payload=self._fallback.emit(tokens),
            )

        return CallbackResult(
            redirect_target=redirect_target,
            identity_id=identity_id,
            session_id=session_id,
        )

    # Established sessions

    async def resolve_session(self, session_id: str | None) -> LiveCredential:
        """Load a session, refreshing it when close to expiry.

        Raises:
            Unauthenticated: No session id, or no live session for it
            StoreUnavailable: The store could not be queried
        """
        if not session_id:
            raise Unauthenticated("No session")

        session = await self._store.get(session_id)
        if session is None:
            raise Unauthenticated("Session expired or not found")

        session = await self.refresh_if_expired(session)
        return LiveCredential.from_session(session)

    async def refresh_if_expired(self, session: Session) -> Session:
        """Refresh the token pair when `session` is inside the refresh window.

        Always returns a usable session object; refresh and persistence
        failures are logged and the best available pair is returned.
        """
        if not session.needs_refresh(self._clock(), self.refresh_threshold):
            return session

        if not session.refresh_token:
            logger.info(f"Session {session.id} is near expiry and has no refresh token")
            return session

        try:
            tokens = await self._exchanger.refresh_access_token(session.refresh_token)
        except AuthError as e:
            logger.warning(f"Refresh failed for session {session.id}: {e.kind.value}: {e}")
            return session

        expires_at = self._clock() + timedelta(seconds=tokens.expires_in)
        refreshed = session.with_tokens(
            access_token=tokens.access_token,
            # Bungie may not rotate the refresh token
            refresh_token=tokens.refresh_token or session.refresh_token,
            expires_at=expires_at,
        )

        try:
            persisted = await self._store.update_tokens(
                session.id,
                refreshed.access_token,
                refreshed.refresh_token,
                refreshed.expires_at,
                expected_version=session.version,
            )
        except StoreUnavailable:
            logger.warning(f"Refreshed tokens for session {session.id} were not persisted")
            return refreshed

        if persisted:
            logger.info(f"Refreshed session {session.id}")
            return refreshed

        # A concurrent request refreshed first; its pair is the stored one
        logger.info(f"Session {session.id} was refreshed concurrently; using stored tokens")
        try:
            current = await self._store.get(session.id)
        except StoreUnavailable:
            return refreshed
        return current if current is not None else refreshed

    async def backfill_identity(self, session_id: str | None, identity_id: str | None) -> bool:
        """Record the Bungie membership id once it is known.

        Idempotent: returns True only for the call that resolved the
        identity. Store outages are logged and absorbed.
        """
        if not session_id or not identity_id or identity_id == UNRESOLVED_IDENTITY:
            return False

        try:
            changed = await self._store.update_identity(session_id, identity_id)
        except StoreUnavailable:
            logger.warning(f"Could not persist identity for session {session_id}")
            return False

        if changed:
            logger.info(f"Resolved identity {identity_id} for session {session_id}")
        return changed

    # Fallback credentials

    async def resolve_fallback(self, payload: str | None) -> LiveCredential:
        """Turn a fallback payload into a credential.

        The pending token is promoted into a durable session when the store
        accepts it; the returned credential then carries the new session id
        so the caller can replace the fallback cookie.
        Replaying a payload returns the session it was first promoted to.

        Raises:
            Unauthenticated: Payload malformed or its token expired
        """
        pending = self._fallback.recover(payload)
        if isinstance(pending, Malformed):
            raise Unauthenticated(f"Fallback credential rejected: {pending.reason}")

        now = self._clock()
        remaining = pending.remaining_seconds(now)
        if remaining <= 0:
            raise Unauthenticated("Fallback credential expired")

        unpromoted = LiveCredential(
            access_token=pending.access_token,
            expires_at=pending.expires_at,
            from_fallback=True,
        )
        try:
            session_id = await self._store.insert(
                UNRESOLVED_IDENTITY,
                pending.access_token,
                pending.refresh_token,
                remaining,
                grant_digest=grant_digest(pending.access_token),
            )
            session = await self._store.get(session_id)
        except StoreUnavailable:
            return unpromoted

        logger.info(f"Promoted fallback credential to session {session_id}")
        if session is None:
            return replace(unpromoted, session_id=session_id)

        # The cookie may have been promoted and refreshed by an earlier request
        session = await self.refresh_if_expired(session)
        return replace(LiveCredential.from_session(session), from_fallback=True)
