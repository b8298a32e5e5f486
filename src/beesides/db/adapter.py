"""
Backend Adapter Protocols.

Defines the abstract interfaces the session manager and onboarding flow
consume. The product runs against interchangeable hosted backends, so the
core only ever sees these protocols; `beesides.db.client` provides the
Supabase implementation and tests provide in-memory fakes.

Every method raises from the `beesides.errors` taxonomy, never raw SDK
exceptions.
"""

from typing import Any, Protocol, runtime_checkable

from beesides.models import Identity, Profile, SessionGrant


@runtime_checkable
class IdentityService(Protocol):
    """
    Remote identity service: credentials, sessions, recovery.

    Session tokens are held by the implementation (the SDK client); callers
    only see SessionGrant so they can cache the renewable credential.
    """

    async def create_account(
        self, identifier: str, secret: str, display_name: str
    ) -> SessionGrant | None:
        """
        Register a new account.

        Returns a grant when the service signs the new user in as part of
        registration, None when a separate create_session is needed.
        Raises RegistrationRejected.
        """
        ...

    async def create_session(self, identifier: str, secret: str) -> SessionGrant:
        """Sign in with identifier + secret. Raises InvalidCredentials."""
        ...

    async def renew_session(self, renewable_credential: str) -> SessionGrant:
        """Re-establish a session from a cached renewable credential."""
        ...

    async def get_current_identity(self) -> Identity:
        """Validate the active session. Raises SessionMissing or Unreachable."""
        ...

    async def destroy_session(self) -> None:
        """Revoke the active session remotely."""
        ...

    async def begin_recovery(self, identifier: str) -> None:
        """Send a password recovery message. Raises RecoveryFailed."""
        ...

    async def confirm_recovery(self, token: str, secret: str) -> None:
        """Set a new secret using a recovery token. Raises RecoveryFailed."""
        ...


@runtime_checkable
class ProfileStore(Protocol):
    """
    Remote profile store: one document per user id.

    Uniqueness per user id is enforced by the store; a losing concurrent
    create raises ProfileAlreadyExists.
    """

    async def read_profile(self, user_id: str) -> Profile:
        """Raises ProfileNotFound or ReadFailed."""
        ...

    async def create_profile(self, user_id: str, defaults: Profile) -> Profile:
        """Raises ProfileAlreadyExists or WriteFailed."""
        ...

    async def update_profile(self, user_id: str, patch: dict[str, Any]) -> Profile:
        """Shallow-merge `patch` into the profile. Raises WriteFailed or ProfileNotFound."""
        ...
