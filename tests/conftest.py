"""
Pytest configuration and fixtures for Beesides tests.

The session manager and onboarding flow run against in-memory fakes of the
identity service and profile store. Gates (asyncio.Event) let a test hold a
remote call open to interleave other operations with it.
"""

import asyncio
import os
from collections import Counter
from unittest.mock import MagicMock

import pytest

# Set test environment before importing beesides modules
os.environ["BEESIDES_ENV"] = "development"
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")

from beesides.errors import (
    InvalidCredentials,
    ProfileAlreadyExists,
    ProfileNotFound,
    ReadFailed,
    RecoveryFailed,
    RegistrationRejected,
    SessionMissing,
    WriteFailed,
)
from beesides.models import Identity, Profile, SessionGrant
from beesides.session import SessionManager
from beesides.storage import CredentialCache, MemoryKeyValueStore


class FakeIdentityService:
    """In-memory identity service with per-call counters and failure hooks."""

    def __init__(self):
        self.accounts: dict[str, tuple[str, Identity]] = {}
        self.current: Identity | None = None
        self.refresh_tokens: dict[str, str] = {}     # token -> email
        self.calls: Counter = Counter()
        self.recovery_requests: list[str] = []
        self.grant_on_sign_up = True

        # Held open until set() when not None
        self.identity_gate: asyncio.Event | None = None
        self.renew_gate: asyncio.Event | None = None
        self.session_gate: asyncio.Event | None = None

        self.fail_identity: Exception | None = None
        self.fail_renew: Exception | None = None
        self.fail_destroy: Exception | None = None
        self._issued = 0

    def add_account(self, email: str, secret: str, display_name: str = "") -> Identity:
        identity = Identity(
            user_id=f"user-{len(self.accounts) + 1:04d}-{email.split('@')[0]}",
            email=email,
            display_name=display_name,
        )
        self.accounts[email] = (secret, identity)
        return identity

    def issue_refresh_token(self, email: str) -> str:
        self._issued += 1
        token = f"refresh-{self._issued}"
        self.refresh_tokens[token] = email
        return token

    def _grant(self, email: str) -> SessionGrant:
        self.current = self.accounts[email][1]
        return SessionGrant(
            access_token=f"access-{self._issued + 1}",
            renewable_credential=self.issue_refresh_token(email),
        )

    def expire(self) -> None:
        """Drop the live session but keep refresh tokens valid."""
        self.current = None

    async def create_account(self, identifier, secret, display_name):
        self.calls["create_account"] += 1
        if identifier in self.accounts:
            raise RegistrationRejected("User already registered")
        if len(secret) < 6:
            raise RegistrationRejected("Password should be at least 6 characters")
        self.add_account(identifier, secret, display_name)
        if not self.grant_on_sign_up:
            return None
        return self._grant(identifier)

    async def create_session(self, identifier, secret):
        self.calls["create_session"] += 1
        if self.session_gate is not None:
            await self.session_gate.wait()
        account = self.accounts.get(identifier)
        if account is None or account[0] != secret:
            raise InvalidCredentials("Invalid login credentials")
        return self._grant(identifier)

    async def renew_session(self, renewable_credential):
        self.calls["renew_session"] += 1
        if self.renew_gate is not None:
            await self.renew_gate.wait()
        if self.fail_renew is not None:
            raise self.fail_renew
        email = self.refresh_tokens.pop(renewable_credential, None)
        if email is None:
            raise InvalidCredentials("Invalid Refresh Token: Refresh Token Not Found")
        return self._grant(email)

    async def get_current_identity(self):
        self.calls["get_current_identity"] += 1
        current = self.current
        if self.identity_gate is not None:
            await self.identity_gate.wait()
        if self.fail_identity is not None:
            raise self.fail_identity
        if current is None:
            raise SessionMissing("Auth session missing!")
        return current

    async def destroy_session(self):
        self.calls["destroy_session"] += 1
        self.current = None
        if self.fail_destroy is not None:
            raise self.fail_destroy

    async def begin_recovery(self, identifier):
        self.calls["begin_recovery"] += 1
        self.recovery_requests.append(identifier)

    async def confirm_recovery(self, token, secret):
        self.calls["confirm_recovery"] += 1
        if token != "valid-recovery-token" or not self.recovery_requests:
            raise RecoveryFailed("Token has expired or is invalid")
        email = self.recovery_requests[-1]
        self.accounts[email] = (secret, self.accounts[email][1])


class FakeProfileStore:
    """In-memory profile table enforcing one row per user id."""

    def __init__(self):
        self.rows: dict[str, dict] = {}
        self.patches: list[dict] = []
        self.calls: Counter = Counter()

        self.create_gate: asyncio.Event | None = None
        self.fail_reads = 0
        self.fail_creates = 0
        self.fail_writes = 0
        # Simulate another tab inserting the row between our read and create
        self.race_on_create = False

    def seed(self, user_id: str, **fields) -> None:
        self.rows[user_id] = Profile(user_id=user_id, **fields).to_row()

    async def read_profile(self, user_id):
        self.calls["read_profile"] += 1
        if self.fail_reads:
            self.fail_reads -= 1
            raise ReadFailed("Failed to read profile: connection reset")
        row = self.rows.get(user_id)
        if row is None:
            raise ProfileNotFound(f"No profile for user {user_id}")
        return Profile.from_row(dict(row))

    async def create_profile(self, user_id, defaults):
        self.calls["create_profile"] += 1
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.fail_creates:
            self.fail_creates -= 1
            raise WriteFailed("Failed to create profile: timeout")
        if self.race_on_create and user_id not in self.rows:
            self.seed(user_id, display_name="created-elsewhere")
        if user_id in self.rows:
            raise ProfileAlreadyExists(f"Profile already exists for user {user_id}")
        row = defaults.to_row()
        row["id"] = user_id
        self.rows[user_id] = row
        return Profile.from_row(dict(row))

    async def update_profile(self, user_id, patch):
        self.calls["update_profile"] += 1
        if self.fail_writes:
            self.fail_writes -= 1
            raise WriteFailed("Failed to update profile: timeout")
        if user_id not in self.rows:
            raise ProfileNotFound(f"No profile for user {user_id}")
        self.patches.append(dict(patch))
        self.rows[user_id].update(patch)
        return Profile.from_row(dict(self.rows[user_id]))


@pytest.fixture
def identity_service():
    service = FakeIdentityService()
    service.add_account("ada@example.com", "correct-horse", "Ada")
    return service


@pytest.fixture
def profile_store():
    return FakeProfileStore()


@pytest.fixture
def durable_store():
    return MemoryKeyValueStore()


@pytest.fixture
def credentials(durable_store):
    return CredentialCache(durable_store)


@pytest.fixture
def manager(identity_service, profile_store, credentials):
    return SessionManager(identity_service, profile_store, credentials)


@pytest.fixture
def mock_supabase():
    """Mock Supabase client for adapter tests."""
    mock_client = MagicMock()

    # Mock table operations
    mock_table = MagicMock()
    mock_table.select.return_value = mock_table
    mock_table.insert.return_value = mock_table
    mock_table.update.return_value = mock_table
    mock_table.eq.return_value = mock_table
    mock_table.maybe_single.return_value = mock_table
    mock_table.execute.return_value = MagicMock(data=[])

    mock_client.table.return_value = mock_table

    return mock_client
