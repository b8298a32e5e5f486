"""
Beesides - Supabase Client.

Supabase-backed implementations of IdentityService and ProfileStore.
All SDK calls go through here and every SDK/network exception is mapped
into the beesides.errors taxonomy before it leaves this module.
"""

import logging
from datetime import datetime
from typing import Any

import httpx
from supabase import Client, create_client

from beesides.config import settings
from beesides.errors import (
    AuthError,
    InvalidCredentials,
    ProfileAlreadyExists,
    ProfileNotFound,
    ReadFailed,
    RecoveryFailed,
    RegistrationRejected,
    SessionMissing,
    Unreachable,
    WriteFailed,
)
from beesides.models import Identity, Profile, SessionGrant

logger = logging.getLogger(__name__)

# Singleton client instance
_client: Client | None = None


def get_client() -> Client:
    """
    Get the Supabase client.

    Uses singleton pattern so the auth session lives in one place.
    """
    global _client

    if _client is None:
        _client = create_client(
            settings.supabase_url,
            settings.supabase_anon_key,
        )

    return _client


def get_authenticated_client(access_token: str) -> Client:
    """
    Client whose table queries run as the given user (row-level security).

    A fresh client per token; the singleton keeps the local auth session.
    """
    client = create_client(
        settings.supabase_url,
        settings.supabase_anon_key,
    )
    client.postgrest.auth(access_token)
    return client


# =============================================================================
# Error classification
# =============================================================================

# Substrings of Supabase auth error messages/codes, checked in order
_INVALID_CREDENTIAL_MARKERS = (
    "invalid login credentials",
    "invalid_credentials",
    "email not confirmed",
    "invalid refresh token",
    "refresh token not found",
    "refresh_token_not_found",
)
_REGISTRATION_MARKERS = (
    "already registered",
    "user_already_exists",
    "weak password",
    "weak_password",
    "password should be",
    "signup is disabled",
    "email_address_invalid",
)
_SESSION_MISSING_MARKERS = (
    "auth session missing",
    "session_not_found",
    "jwt expired",
    "invalid jwt",
    "bad_jwt",
)


def _is_network_error(exc: Exception) -> bool:
    return isinstance(exc, (ConnectionError, TimeoutError, httpx.TransportError))


def classify_auth_error(
    exc: Exception,
    default: type[AuthError] = AuthError,
) -> AuthError:
    """
    Map a Supabase or network exception to the auth taxonomy.

    Args:
        exc: Exception raised by the SDK call
        default: Class used when nothing more specific matches

    Returns:
        AuthError subclass instance (chain with `raise ... from exc`)
    """
    if isinstance(exc, AuthError):
        return exc

    if _is_network_error(exc):
        return Unreachable(f"Identity service unreachable: {exc}")

    message = str(exc)
    lowered = f"{type(exc).__name__} {message} {getattr(exc, 'code', '') or ''}".lower()
    status = getattr(exc, "status", None)

    if "authsessionmissing" in lowered or any(m in lowered for m in _SESSION_MISSING_MARKERS):
        return SessionMissing(message or "No active session")

    for marker in _INVALID_CREDENTIAL_MARKERS:
        if marker in lowered:
            return InvalidCredentials(message)

    for marker in _REGISTRATION_MARKERS:
        if marker in lowered:
            return RegistrationRejected(message)

    if isinstance(status, int):
        if status in (401, 403):
            return SessionMissing(message or "Unauthorized")
        if status >= 500:
            return Unreachable(f"Identity service error ({status}): {message}")

    return default(message or type(exc).__name__)


def _identity_from_user(user: Any) -> Identity:
    """Build an Identity from a Supabase User object."""
    metadata = getattr(user, "user_metadata", None) or {}
    created_at = getattr(user, "created_at", None)
    if isinstance(created_at, datetime):
        created_at = created_at.isoformat()
    return Identity(
        user_id=str(user.id),
        email=getattr(user, "email", None),
        display_name=metadata.get("name") or metadata.get("username") or "",
        created_at=created_at,
    )


def _grant_from_response(response: Any) -> SessionGrant | None:
    """Extract a SessionGrant from a Supabase AuthResponse, if it carries a session."""
    session = getattr(response, "session", None) if response is not None else None
    if session is None or not getattr(session, "access_token", None):
        return None
    return SessionGrant(
        access_token=session.access_token,
        renewable_credential=getattr(session, "refresh_token", None),
        expires_at=getattr(session, "expires_at", None),
    )


# =============================================================================
# Identity Service
# =============================================================================


class SupabaseIdentityService:
    """IdentityService backed by Supabase Auth (email + password)."""

    def __init__(self, client: Client | None = None, recovery_redirect_url: str | None = None):
        self._client = client
        self._recovery_redirect_url = recovery_redirect_url

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_client()
        return self._client

    async def create_account(
        self, identifier: str, secret: str, display_name: str
    ) -> SessionGrant | None:
        try:
            response = self.client.auth.sign_up({
                "email": identifier,
                "password": secret,
                "options": {"data": {"name": display_name}},
            })
        except Exception as e:
            raise classify_auth_error(e, default=RegistrationRejected) from e

        if response is None or getattr(response, "user", None) is None:
            raise RegistrationRejected("Account creation returned no user")

        logger.info(f"Account created for {identifier}")
        return _grant_from_response(response)

    async def create_session(self, identifier: str, secret: str) -> SessionGrant:
        try:
            response = self.client.auth.sign_in_with_password({
                "email": identifier,
                "password": secret,
            })
        except Exception as e:
            raise classify_auth_error(e, default=InvalidCredentials) from e

        grant = _grant_from_response(response)
        if grant is None:
            raise InvalidCredentials("Sign-in returned no session")
        return grant

    async def renew_session(self, renewable_credential: str) -> SessionGrant:
        try:
            response = self.client.auth.refresh_session(renewable_credential)
        except Exception as e:
            raise classify_auth_error(e, default=InvalidCredentials) from e

        grant = _grant_from_response(response)
        if grant is None:
            raise InvalidCredentials("Renewal returned no session")
        return grant

    async def get_current_identity(self) -> Identity:
        try:
            response = self.client.auth.get_user()
        except Exception as e:
            raise classify_auth_error(e, default=SessionMissing) from e

        if not response or not getattr(response, "user", None):
            raise SessionMissing("No active session")
        return _identity_from_user(response.user)

    async def destroy_session(self) -> None:
        try:
            self.client.auth.sign_out()
        except Exception as e:
            raise classify_auth_error(e) from e

    async def begin_recovery(self, identifier: str) -> None:
        options = {}
        if self._recovery_redirect_url:
            options["redirect_to"] = self._recovery_redirect_url
        try:
            self.client.auth.reset_password_for_email(identifier, options)
        except Exception as e:
            error = classify_auth_error(e, default=RecoveryFailed)
            if isinstance(error, Unreachable):
                raise error from e
            raise RecoveryFailed(str(e)) from e

    async def confirm_recovery(self, token: str, secret: str) -> None:
        """
        Exchange the emailed recovery token for a session, set the new
        secret, then drop that session so the user signs in normally.
        """
        try:
            self.client.auth.verify_otp({"token_hash": token, "type": "recovery"})
            self.client.auth.update_user({"password": secret})
        except Exception as e:
            error = classify_auth_error(e, default=RecoveryFailed)
            if isinstance(error, Unreachable):
                raise error from e
            raise RecoveryFailed(str(e)) from e

        try:
            self.client.auth.sign_out()
        except Exception as e:
            logger.warning(f"Failed to drop recovery session: {e}")


# =============================================================================
# Profile Store
# =============================================================================


class SupabaseProfileStore:
    """ProfileStore backed by a Supabase table keyed by `id`."""

    def __init__(self, client: Client | None = None, table: str | None = None):
        self._client = client
        self._table = table

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_client()
        return self._client

    @property
    def table(self) -> str:
        return self._table or settings.profiles_table

    async def read_profile(self, user_id: str) -> Profile:
        try:
            result = (
                self.client.table(self.table)
                .select("*")
                .eq("id", user_id)
                .maybe_single()
                .execute()
            )
        except Exception as e:
            logger.warning(f"Failed to read profile for user {user_id}: {e}")
            raise ReadFailed(f"Failed to read profile: {e}") from e

        # maybe_single() yields None (or empty data) when no row matches
        if result is None or not result.data:
            raise ProfileNotFound(f"No profile for user {user_id}")
        return Profile.from_row(result.data)

    async def create_profile(self, user_id: str, defaults: Profile) -> Profile:
        row = defaults.to_row()
        row["id"] = user_id
        try:
            result = self.client.table(self.table).insert(row).execute()
        except Exception as e:
            # 23505 = unique_violation: another caller created it first
            if str(getattr(e, "code", "")) == "23505" or "duplicate key" in str(e).lower():
                raise ProfileAlreadyExists(f"Profile already exists for user {user_id}") from e
            logger.error(f"Failed to create profile for user {user_id}: {e}")
            raise WriteFailed(f"Failed to create profile: {e}") from e

        if not result.data:
            raise WriteFailed(f"Profile insert for user {user_id} returned no row")
        return Profile.from_row(result.data[0])

    async def update_profile(self, user_id: str, patch: dict[str, Any]) -> Profile:
        try:
            result = (
                self.client.table(self.table)
                .update(patch)
                .eq("id", user_id)
                .execute()
            )
        except Exception as e:
            logger.error(f"Failed to update profile for user {user_id}: {e}")
            raise WriteFailed(f"Failed to update profile: {e}") from e

        if not result.data:
            raise ProfileNotFound(f"No profile for user {user_id}")
        return Profile.from_row(result.data[0])
