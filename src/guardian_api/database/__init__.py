"""Database module for Bungie sessions.

This module provides:
- SQLAlchemy async database connection
- The sessions table model
- Encrypted storage for Bungie tokens
"""

from guardian_api.database.connection import Database
from guardian_api.database.encryption import TokenCipher
from guardian_api.database.models import (
    UNRESOLVED_IDENTITY,
    Base,
    SessionRecord,
)

__all__ = [
    # Connection
    "Database",
    # Encryption
    "TokenCipher",
    # Models
    "Base",
    "SessionRecord",
    "UNRESOLVED_IDENTITY",
]
