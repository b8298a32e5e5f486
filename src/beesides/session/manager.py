"""
Session Lifecycle Manager.

Owns the single authoritative Session and serializes everything that can
mutate it:

- initialize() / refresh(): single-flight identity checks (page load, tab
  focus, explicit calls collapse into one in-flight check)
- recovery: one renewal attempt per check from the cached renewable
  credential
- sign_out and a successful sign_in / sign_up: bump the operation epoch so
  any check that started earlier cannot overwrite their result when it
  resolves
- ensure_profile_exists: idempotent, deduped per user id

Callers never mutate the session; they read `manager.session` or
subscribe() to changes.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Callable

from beesides.db.adapter import IdentityService, ProfileStore
from beesides.errors import (
    AuthError,
    InvalidCredentials,
    ProfileAlreadyExists,
    ProfileNotFound,
    SessionMissing,
    Unreachable,
)
from beesides.models import Identity, Profile, Session, SessionStatus
from beesides.storage import CredentialCache

logger = logging.getLogger(__name__)


SessionListener = Callable[[Session], None]


class SessionManager:
    """Single owner of the client-side session."""

    def __init__(
        self,
        identity: IdentityService,
        profiles: ProfileStore,
        credentials: CredentialCache,
    ):
        self._identity = identity
        self._profiles = profiles
        self._credentials = credentials

        self._session = Session()
        self._epoch = 0
        self._check_task: asyncio.Task | None = None
        self._profile_tasks: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._listeners: list[SessionListener] = []

    # =========================================================================
    # Observation
    # =========================================================================

    @property
    def session(self) -> Session:
        return self._session

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener called with every new Session. Returns unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_session(self, session: Session) -> None:
        if session == self._session:
            return
        self._session = session
        logger.debug(f"Session -> {session.status.value}")
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception as e:
                logger.error(f"Session listener failed: {e}")

    def _apply(self, epoch: int, session: Session) -> bool:
        """Publish `session` only if no sign-in/out happened since `epoch`."""
        if epoch != self._epoch:
            logger.debug(
                f"Discarding stale session result ({session.status.value}) "
                f"from epoch {epoch}, current epoch {self._epoch}"
            )
            return False
        self._set_session(session)
        return True

    def _next_epoch(self) -> int:
        """Start a new epoch; any in-flight check becomes stale."""
        self._epoch += 1
        self._check_task = None
        return self._epoch

    # =========================================================================
    # Checks
    # =========================================================================

    async def initialize(self) -> Session:
        """First session check. No-op once the session is initialized."""
        if self._session.initialized:
            return self._session
        return await self._join_check()

    async def refresh(self) -> Session:
        """
        Re-validate the session (e.g. on tab focus).

        Joins the in-flight check if there is one. An authenticated session
        is re-validated without flipping to CHECKING first.
        """
        if not self._session.initialized:
            return await self.initialize()
        return await self._join_check()

    async def _join_check(self) -> Session:
        task = self._check_task
        if task is None or task.done():
            task = asyncio.create_task(self._check(self._epoch))
            self._check_task = task
        # Shield so a cancelled caller never cancels the shared check
        await asyncio.shield(task)
        return self._session

    async def _check(self, epoch: int) -> None:
        previous = self._session
        was_authenticated = previous.is_authenticated
        try:
            if not was_authenticated:
                self._apply(epoch, Session(
                    status=SessionStatus.CHECKING,
                    initialized=previous.initialized,
                ))
            identity = await self._identify(epoch, was_authenticated)
        except Exception as e:
            if was_authenticated:
                logger.warning(f"Session re-check failed, keeping current session: {e}")
                self._apply(epoch, previous)
                return
            if isinstance(e, Unreachable):
                logger.error(f"Identity service unreachable during session check: {e}")
            else:
                logger.error(f"Unexpected error during session check: {e}")
            self._apply(epoch, Session(
                status=SessionStatus.FAILED,
                initialized=True,
                error=str(e),
            ))
            return
        finally:
            if self._check_task is asyncio.current_task():
                self._check_task = None

        if identity is None:
            logger.info("No active session found")
            self._apply(epoch, Session(status=SessionStatus.ANONYMOUS, initialized=True))
            return

        applied = self._apply(epoch, Session(
            status=SessionStatus.AUTHENTICATED,
            identity=identity,
            initialized=True,
        ))
        if applied and not was_authenticated:
            logger.info(f"Valid session found for user {identity.user_id}")
            self._schedule_profile_guarantee(identity)

    async def _identify(self, epoch: int, quiet: bool = False) -> Identity | None:
        """Current identity, falling back to one recovery attempt."""
        try:
            return await self._identity.get_current_identity()
        except (SessionMissing, InvalidCredentials) as e:
            logger.info(f"No active session ({e}), attempting recovery")
        return await self._recover(epoch, quiet)

    async def _recover(self, epoch: int, quiet: bool = False) -> Identity | None:
        """
        Re-establish a session from the cached renewable credential.

        Runs at most once per check. An authentication failure clears the
        credential so the next check does not retry it; Unreachable
        propagates and leaves the credential in place.

        `quiet` renews without publishing RECOVERING, for re-checks of an
        authenticated session.
        """
        credential = self._credentials.get()
        if not credential or epoch != self._epoch:
            return None

        if not quiet:
            self._apply(epoch, Session(
                status=SessionStatus.RECOVERING,
                initialized=self._session.initialized,
            ))

        try:
            grant = await self._identity.renew_session(credential)
            identity = await self._identity.get_current_identity()
        except Unreachable:
            raise
        except AuthError as e:
            logger.warning(f"Session recovery failed, clearing cached credential: {e}")
            if epoch == self._epoch:
                self._credentials.clear()
            return None

        if epoch != self._epoch:
            await self._drop_if_signed_out()
            return None

        if grant.renewable_credential:
            self._credentials.save(grant.renewable_credential)
        logger.info(f"Session recovered for user {identity.user_id}")
        return identity

    # =========================================================================
    # Explicit auth actions
    # =========================================================================

    async def sign_up(self, identifier: str, secret: str, display_name: str) -> Identity:
        """
        Create the account, sign in, cache the renewable credential and
        guarantee a profile.

        Profile failures are logged only; the identity is still returned.

        Raises:
            RegistrationRejected: identity service refused the account
        """
        started = self._epoch
        logger.info(f"Registration attempt for {identifier}")

        grant = await self._identity.create_account(identifier, secret, display_name)
        if grant is None:
            grant = await self._identity.create_session(identifier, secret)
        identity = await self._identity.get_current_identity()
        if display_name and not identity.display_name:
            identity = replace(identity, display_name=display_name)

        if not await self._adopt(started, grant.renewable_credential, identity):
            return identity

        await self._guarantee_profile(identity)
        return identity

    async def sign_in(
        self,
        identifier: str,
        secret: str,
        is_new_user_hint: bool = False,
    ) -> Identity:
        """
        Create a session and cache the renewable credential.

        Raises:
            InvalidCredentials: identifier/secret rejected
        """
        started = self._epoch
        logger.info(f"Login attempt for {identifier}")

        grant = await self._identity.create_session(identifier, secret)
        identity = await self._identity.get_current_identity()

        if not await self._adopt(started, grant.renewable_credential, identity):
            return identity

        if is_new_user_hint:
            await self._guarantee_profile(identity)
        return identity

    async def _adopt(self, started: int, credential: str | None, identity: Identity) -> bool:
        """
        Publish a freshly signed-in identity unless another auth action
        finished while the remote calls were in flight.

        The epoch only moves here, after the identity service accepted the
        credentials, so a rejected attempt leaves any in-flight check alone.
        """
        if started != self._epoch:
            logger.warning(
                f"Sign-in for user {identity.user_id} superseded by a later auth action"
            )
            await self._drop_if_signed_out()
            return False
        epoch = self._next_epoch()
        self._credentials.save(credential)
        self._apply(epoch, Session(
            status=SessionStatus.AUTHENTICATED,
            identity=identity,
            initialized=True,
        ))
        logger.info(f"User {identity.user_id} signed in")
        return True

    async def sign_out(self) -> None:
        """
        Clear local state, then revoke the remote session.

        Local logout always happens; a remote failure is only logged.
        """
        epoch = self._next_epoch()
        user_id = self._session.identity.user_id if self._session.identity else None
        logger.info(f"Logout initiated for user {user_id or 'none'}")

        self._credentials.clear()
        self._apply(epoch, Session(status=SessionStatus.ANONYMOUS, initialized=True))
        await self._destroy_remote_quietly()

    async def _destroy_remote_quietly(self) -> None:
        try:
            await self._identity.destroy_session()
        except Exception as e:
            logger.warning(f"Remote sign-out failed; local session already cleared: {e}")

    async def _drop_if_signed_out(self) -> None:
        """A superseded sign-in/renewal revived a remote session after sign-out."""
        if self._session.status == SessionStatus.ANONYMOUS:
            await self._destroy_remote_quietly()

    async def begin_recovery(self, identifier: str) -> None:
        """Start password recovery. Does not touch the session."""
        logger.info(f"Initiating password recovery for {identifier}")
        await self._identity.begin_recovery(identifier)

    async def confirm_recovery(self, token: str, secret: str) -> None:
        """Finish password recovery. The user signs in afterwards."""
        await self._identity.confirm_recovery(token, secret)
        logger.info("Password reset successful")

    # =========================================================================
    # Profile guarantee
    # =========================================================================

    async def ensure_profile_exists(
        self,
        user_id: str,
        identity: Identity | None = None,
    ) -> Profile:
        """
        Read the user's profile, creating a default one if absent.

        Concurrent calls for the same user share one execution.
        """
        task = self._profile_tasks.get(user_id)
        if task is None or task.done():
            if identity is None and self._session.identity is not None:
                if self._session.identity.user_id == user_id:
                    identity = self._session.identity
            task = asyncio.create_task(self._ensure_profile(user_id, identity))
            self._profile_tasks[user_id] = task

            def _forget(done: asyncio.Task) -> None:
                if self._profile_tasks.get(user_id) is done:
                    del self._profile_tasks[user_id]

            task.add_done_callback(_forget)
        return await asyncio.shield(task)

    async def _ensure_profile(self, user_id: str, identity: Identity | None) -> Profile:
        try:
            return await self._profiles.read_profile(user_id)
        except ProfileNotFound:
            pass

        logger.info(f"No profile found, creating new profile for user {user_id}")
        defaults = Profile.default_for(user_id, identity)
        try:
            return await self._profiles.create_profile(user_id, defaults)
        except ProfileAlreadyExists:
            logger.info(f"Profile for user {user_id} was created concurrently, re-reading")
            return await self._profiles.read_profile(user_id)

    async def _guarantee_profile(self, identity: Identity) -> None:
        """ensure_profile_exists that never raises; it self-heals on a later call."""
        try:
            await self.ensure_profile_exists(identity.user_id, identity)
        except Exception as e:
            logger.warning(f"Failed to ensure profile for user {identity.user_id}: {e}")

    def _schedule_profile_guarantee(self, identity: Identity) -> None:
        task = asyncio.create_task(self._guarantee_profile(identity))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_idle(self) -> None:
        """Wait for background profile work (used by the CLI and tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
