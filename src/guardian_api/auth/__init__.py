"""Authentication module.

Signs users in with Bungie.net OAuth and keeps their credential server-side.

## OAuth Flow

1. Client sends the user to /auth/login?next=/some/page
2. Redirect to the Bungie consent screen, `next` carried in `state`
3. Bungie redirects back to /auth/callback with an authorization code
4. Exchange the code for an access token and refresh token
5. Store a session row and hand the browser its id (cookie and `?sid=`)
6. Later requests present the id; tokens are refreshed when close to expiry

If the session store is down at step 5, the tokens travel in an encrypted
fallback cookie instead and are promoted into a session on a later request.

## Security

- Tokens are encrypted at rest and never returned to the client
- Session and fallback cookies are HTTP-only
- `next` must be a local path; anything else becomes the default page
"""

from guardian_api.auth.bungie import BungieOAuth, TokenSet
from guardian_api.auth.dependencies import (
    extract_session_id,
    get_live_credential,
    get_live_credential_optional,
    get_session_manager,
)
from guardian_api.auth.errors import (
    AuthError,
    ErrorKind,
    InvalidReturnState,
    MalformedUpstreamResponse,
    MissingCode,
    StoreUnavailable,
    Unauthenticated,
    UpstreamAuthError,
    UpstreamTimeout,
)
from guardian_api.auth.fallback import FallbackChannel, Malformed, PendingToken
from guardian_api.auth.manager import CallbackResult, SessionManager
from guardian_api.auth.session import LiveCredential, Session
from guardian_api.auth.store import SessionStore, SqlSessionStore

__all__ = [
    "BungieOAuth",
    "TokenSet",
    "SessionStore",
    "SqlSessionStore",
    "FallbackChannel",
    "PendingToken",
    "Malformed",
    "SessionManager",
    "CallbackResult",
    "Session",
    "LiveCredential",
    "extract_session_id",
    "get_live_credential",
    "get_live_credential_optional",
    "get_session_manager",
    # Errors
    "AuthError",
    "ErrorKind",
    "MissingCode",
    "UpstreamAuthError",
    "UpstreamTimeout",
    "MalformedUpstreamResponse",
    "StoreUnavailable",
    "Unauthenticated",
    "InvalidReturnState",
]
