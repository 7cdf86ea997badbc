"""Database models for Bungie sessions.

## Security Notes

- Access and refresh tokens are encrypted at rest using Fernet
- The encryption key is derived from the application secret
- PostgreSQL should be configured with SSL

## Schema

```
sessions
  id             varchar(36)  primary key (uuid4)
  identity_id    varchar(64)  'pending' until the first profile fetch
  access_token   text         encrypted
  refresh_token  text         encrypted, nullable
  expires_at     timestamptz  indexed; rows at or past it are treated as absent
  version        integer      bumped on every token update
  grant_digest   varchar(64)  unique, nullable; set when a fallback credential is promoted
  created_at     timestamptz
```

Rows are never deleted by the service; retention is handled outside it.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Identity placeholder until Bungie reveals the membership id
UNRESOLVED_IDENTITY = "pending"


class Base(DeclarativeBase):
    """Base class for all database models."""


class SessionRecord(Base):
    """Durable record of one user's Bungie credential."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    identity_id: Mapped[str] = mapped_column(
        String(64), nullable=False, default=UNRESOLVED_IDENTITY
    )
    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    grant_digest: Mapped[str | None] = mapped_column(String(64), unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (Index("ix_sessions_expires_at", "expires_at"),)

    def __repr__(self) -> str:
        return f"<SessionRecord {self.id} identity={self.identity_id}>"
