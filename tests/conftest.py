"""Pytest fixtures for Guardian API tests.

This module provides test fixtures that ensure:
1. No external API calls are made (Bungie OAuth, Bungie Platform, Redis)
2. No real PostgreSQL connections; the SQL store runs on in-memory SQLite
3. Isolated test environment with controlled configuration and clock
"""

import os
from datetime import datetime, timedelta, timezone

import pytest
from cryptography.fernet import Fernet

# Set test environment BEFORE importing application modules
os.environ.setdefault("SECRET_KEY", "test-secret-key-at-least-32-characters-long")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BUNGIE_CLIENT_ID", "test-client-id")
os.environ.setdefault("BUNGIE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("BUNGIE_API_KEY", "test-api-key")
os.environ.setdefault("ENVIRONMENT", "development")

from guardian_api.auth.bungie import BungieOAuth, TokenSet
from guardian_api.auth.errors import StoreUnavailable
from guardian_api.auth.fallback import FallbackChannel
from guardian_api.auth.manager import SessionManager
from guardian_api.auth.session import Session, utcnow
from guardian_api.auth.store import SessionStore, SqlSessionStore
from guardian_api.database.connection import Database
from guardian_api.database.encryption import TokenCipher
from guardian_api.database.models import UNRESOLVED_IDENTITY


# =============================================================================
# Test Doubles
# =============================================================================


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeExchanger(BungieOAuth):
    """Bungie OAuth client with scripted token responses.

    Authorization URLs are built by the real implementation.
    """

    def __init__(self):
        super().__init__(
            client_id="test-client-id",
            client_secret="test-client-secret",
            api_key="test-api-key",
            redirect_uri="https://api.example.com/auth/callback",
        )
        self.exchange_result: TokenSet | Exception = TokenSet(
            token_type="Bearer",
            access_token="access-1",
            expires_in=3600,
            refresh_token="refresh-1",
            refresh_expires_in=7776000,
            membership_id="4611686018400000001",
        )
        self.refresh_result: TokenSet | Exception = TokenSet(
            token_type="Bearer",
            access_token="access-2",
            expires_in=3600,
            refresh_token="refresh-2",
        )
        self.exchange_calls: list[str] = []
        self.refresh_calls: list[str] = []

    async def exchange_code(self, code: str) -> TokenSet:
        self.exchange_calls.append(code)
        if isinstance(self.exchange_result, Exception):
            raise self.exchange_result
        return self.exchange_result

    async def refresh_access_token(self, refresh_token: str) -> TokenSet:
        self.refresh_calls.append(refresh_token)
        if isinstance(self.refresh_result, Exception):
            raise self.refresh_result
        return self.refresh_result


class MemorySessionStore(SessionStore):
    """Dict-backed session store with the same contract as SqlSessionStore."""

    def __init__(self, clock=utcnow):
        self.clock = clock
        self.rows: dict[str, Session] = {}
        self.available = True
        self.identity_writes = 0
        self.grants: dict[str, str] = {}
        self._next_id = 0

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailable()

    async def get(self, session_id: str) -> Session | None:
        self._check()
        row = self.rows.get(session_id)
        if row is None or row.expires_at <= self.clock():
            return None
        return Session(**vars(row))

    async def insert(
        self, identity_id, access_token, refresh_token, expires_in, grant_digest=None
    ) -> str:
        self._check()
        if grant_digest in self.grants:
            return self.grants[grant_digest]
        session_id = self.seed(identity_id, access_token, refresh_token, expires_in)
        if grant_digest:
            self.grants[grant_digest] = session_id
        return session_id

    def seed(
        self,
        identity_id: str = UNRESOLVED_IDENTITY,
        access_token: str = "access-1",
        refresh_token: str | None = "refresh-1",
        expires_in: int = 3600,
    ) -> str:
        """Add a session directly, bypassing availability checks."""
        self._next_id += 1
        session_id = f"00000000-0000-4000-8000-{self._next_id:012d}"
        now = self.clock()
        self.rows[session_id] = Session(
            id=session_id,
            identity_id=identity_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=now + timedelta(seconds=expires_in),
            created_at=now,
        )
        return session_id

    async def update_tokens(
        self, session_id, access_token, refresh_token, expires_at, expected_version
    ) -> bool:
        self._check()
        row = self.rows.get(session_id)
        if row is None or row.version != expected_version:
            return False
        row.access_token = access_token
        row.refresh_token = refresh_token
        row.expires_at = expires_at
        row.version += 1
        return True

    async def update_identity(self, session_id, identity_id) -> bool:
        self._check()
        row = self.rows.get(session_id)
        if row is None or row.identity_id != UNRESOLVED_IDENTITY:
            return False
        row.identity_id = identity_id
        self.identity_writes += 1
        return True

    async def ping(self) -> None:
        self._check()


# =============================================================================
# Test Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset settings cache before each test to ensure clean state."""
    from guardian_api.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at a fixed instant."""
    return FrozenClock(datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def cipher() -> TokenCipher:
    """Cipher with a random key (skips the slow PBKDF2 derivation)."""
    return TokenCipher(Fernet.generate_key())


@pytest.fixture
async def database():
    """Initialized in-memory SQLite database with tables created."""
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.init()
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
def sql_store(database, cipher, clock) -> SqlSessionStore:
    return SqlSessionStore(database, cipher, clock=clock)


@pytest.fixture
def memory_store(clock) -> MemorySessionStore:
    return MemorySessionStore(clock=clock)


@pytest.fixture
def exchanger() -> FakeExchanger:
    return FakeExchanger()


@pytest.fixture
def fallback(cipher, clock) -> FallbackChannel:
    return FallbackChannel(cipher, clock=clock)


@pytest.fixture
def manager(exchanger, memory_store, fallback, clock) -> SessionManager:
    return SessionManager(exchanger, memory_store, fallback, clock=clock)
