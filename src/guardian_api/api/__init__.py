"""FastAPI application and routes.

## API Structure

- /auth - Bungie.net OAuth login, callback, logout and session status
- /api/me/profile - Destiny profile summary for the signed-in user
- /health - Liveness plus session database reachability

## Authentication

Protected endpoints accept the session id as `Authorization: Bearer sid:<id>`,
the `session_id` cookie, or a `sid` query parameter, in that order.
"""

from guardian_api.api.app import AppComponents, create_app

__all__ = ["AppComponents", "create_app"]
