"""Durable session storage.

`SessionStore` is the contract the session manager depends on; the
application builds one `SqlSessionStore` at startup and injects it.

## Expiry

`get()` only returns rows whose `expires_at` is still in the future, so an
expired session and a missing one look the same to every caller.

## Concurrent refresh

`update_tokens()` is a compare-and-swap on the row's `version`. Two requests
refreshing the same session both read version N; the first write moves the
row to N+1 and the second write matches nothing, so the fresher pair is
never overwritten by a stale one.

## Fallback promotion

A fallback credential is promoted with `grant_digest` set to a hash of its
access token. The column is unique, so repeated or concurrent promotions of
the same cookie resolve to one session row.

## Failure

Every operation raises `StoreUnavailable` when the database cannot be
reached. Whether that is fatal is the caller's decision.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncGenerator

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from guardian_api.auth.errors import StoreUnavailable
from guardian_api.auth.session import Clock, Session, as_utc, utcnow
from guardian_api.database.connection import Database
from guardian_api.database.encryption import TokenCipher
from guardian_api.database.models import UNRESOLVED_IDENTITY, SessionRecord

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Keyed storage for session records."""

    @abstractmethod
    async def get(self, session_id: str) -> Session | None:
        """Return the session if it exists and has not expired."""

    @abstractmethod
    async def insert(
        self,
        identity_id: str,
        access_token: str,
        refresh_token: str | None,
        expires_in: int,
        grant_digest: str | None = None,
    ) -> str:
        """Create a session expiring `expires_in` seconds from now; return its id.

        When `grant_digest` is given and a session already carries it, that
        session's id is returned and nothing is written.
        """

    @abstractmethod
    async def update_tokens(
        self,
        session_id: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime,
        expected_version: int,
    ) -> bool:
        """Replace the token pair and expiry if the row is still at `expected_version`.

        Returns False when another writer updated the row first.
        """

    @abstractmethod
    async def update_identity(self, session_id: str, identity_id: str) -> bool:
        """Set the identity if it is still unresolved.

        Returns True only when this call changed the row.
        """

    async def ping(self) -> None:
        """Raise StoreUnavailable if the store cannot be reached."""


class SqlSessionStore(SessionStore):
    """Session store backed by the `sessions` table."""

    def __init__(
        self,
        database: Database,
        cipher: TokenCipher,
        clock: Clock = utcnow,
    ):
        self._db = database
        self._cipher = cipher
        self._clock = clock

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        if not self._db.is_initialized:
            raise StoreUnavailable("Session store not initialized")
        try:
            async with self._db.session() as db:
                yield db
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Session store {operation} failed: {e!r}")
            raise StoreUnavailable() from e

    async def get(self, session_id: str) -> Session | None:
        if not _is_session_id(session_id):
            return None

        now = self._clock()
        async with self._transaction("get") as db:
            result = await db.execute(
                select(SessionRecord).where(
                    SessionRecord.id == session_id,
                    SessionRecord.expires_at > now,
                )
            )
            record = result.scalar_one_or_none()

        if record is None:
            return None

        try:
            return self._to_session(record)
        except ValueError:
            # Encrypted under a previous key; the user has to log in again
            logger.warning(f"Session {session_id} has undecryptable tokens")
            return None

    async def insert(
        self,
        identity_id: str,
        access_token: str,
        refresh_token: str | None,
        expires_in: int,
        grant_digest: str | None = None,
    ) -> str:
        if expires_in <= 0:
            raise ValueError("expires_in must be positive")

        now = self._clock()
        record = SessionRecord(
            id=str(uuid.uuid4()),
            identity_id=identity_id or UNRESOLVED_IDENTITY,
            access_token_encrypted=self._cipher.encrypt(access_token),
            refresh_token_encrypted=self._cipher.encrypt_optional(refresh_token),
            expires_at=now + timedelta(seconds=expires_in),
            version=1,
            grant_digest=grant_digest,
            created_at=now,
        )

        async with self._transaction("insert") as db:
            if grant_digest:
                existing = await self._find_by_grant(db, grant_digest)
                if existing is not None:
                    return existing

            db.add(record)
            try:
                await db.commit()
            except IntegrityError:
                # A concurrent insert for the same grant won
                await db.rollback()
                existing = (
                    await self._find_by_grant(db, grant_digest) if grant_digest else None
                )
                if existing is None:
                    raise
                return existing

        logger.info(f"Created session {record.id} (identity={record.identity_id})")
        return record.id

    async def update_tokens(
        self,
        session_id: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime,
        expected_version: int,
    ) -> bool:
        async with self._transaction("update_tokens") as db:
            result = await db.execute(
                update(SessionRecord)
                .where(
                    SessionRecord.id == session_id,
                    SessionRecord.version == expected_version,
                )
                .values(
                    access_token_encrypted=self._cipher.encrypt(access_token),
                    refresh_token_encrypted=self._cipher.encrypt_optional(refresh_token),
                    expires_at=expires_at,
                    version=SessionRecord.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount == 1
            await db.commit()

        return changed

    async def update_identity(self, session_id: str, identity_id: str) -> bool:
        async with self._transaction("update_identity") as db:
            result = await db.execute(
                update(SessionRecord)
                .where(
                    SessionRecord.id == session_id,
                    SessionRecord.identity_id == UNRESOLVED_IDENTITY,
                )
                .values(identity_id=identity_id)
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount == 1
            await db.commit()

        return changed

    async def ping(self) -> None:
        async with self._transaction("ping") as db:
            await db.execute(text("select 1"))

    async def _find_by_grant(self, db: AsyncSession, grant_digest: str) -> str | None:
        result = await db.execute(
            select(SessionRecord.id).where(SessionRecord.grant_digest == grant_digest)
        )
        return result.scalar_one_or_none()

    def _to_session(self, record: SessionRecord) -> Session:
        return Session(
            id=record.id,
            identity_id=record.identity_id,
            access_token=self._cipher.decrypt(record.access_token_encrypted),
            refresh_token=self._cipher.decrypt_optional(record.refresh_token_encrypted),
            expires_at=as_utc(record.expires_at),
            created_at=as_utc(record.created_at),
            version=record.version,
        )


def _is_session_id(value: str | None) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True
