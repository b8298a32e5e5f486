"""
Onboarding State Machine.

Drives the user through the configured steps:

    start -> (update_step_data* -> advance | back)* -> finalize

Each advance() writes the completed step (plus any earlier step whose write
failed) but never blocks on the store: a failed write is reported and
retried on the next advance or on finalize.
finalize() is the only write that must succeed. It clears the registration
intent flags on success; beesides.storage.leave_onboarding() is the other
way they are cleared.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from beesides.db.adapter import ProfileStore
from beesides.errors import (
    InvalidTransition,
    PersistenceError,
    ProfileAlreadyExists,
    ProfileNotFound,
    StepDataInvalid,
    StepIncomplete,
    WriteFailed,
)
from beesides.models import Profile
from beesides.storage import KeyValueStore, clear_navigation_intent

from .payload import build_completion_patch, build_step_patch
from .state import OnboardingProgress, resume_index
from .steps import DEFAULT_STEPS, StepDefinition

logger = logging.getLogger(__name__)


ProgressListener = Callable[[OnboardingProgress | None], None]


@dataclass(frozen=True)
class AdvanceResult:
    """Outcome of advance(). The pointer moved either way."""
    step_id: str
    persisted: bool
    error: PersistenceError | None = None


async def persist_patch(store: ProfileStore, user_id: str, patch: dict[str, Any]) -> Profile:
    """
    Apply a patch to the user's profile, creating the profile if missing.

    Sign-up only guarantees the profile best-effort, so the first onboarding
    write may be the one that has to create it.
    """
    try:
        return await store.update_profile(user_id, patch)
    except ProfileNotFound:
        logger.info(f"No profile for user {user_id} during onboarding write, creating one")

    try:
        await store.create_profile(user_id, Profile.default_for(user_id))
    except ProfileAlreadyExists:
        pass
    return await store.update_profile(user_id, patch)


class OnboardingFlow:
    """Resumable, validated multi-step onboarding for one user."""

    def __init__(
        self,
        store: ProfileStore,
        steps: Sequence[StepDefinition] = DEFAULT_STEPS,
        intent_store: KeyValueStore | None = None,
    ):
        if not steps:
            raise ValueError("OnboardingFlow needs at least one step")
        self._store = store
        self._steps = tuple(steps)
        self._by_id = {step.step_id: step for step in self._steps}
        self._intent_store = intent_store

        self._user_id: str | None = None
        self._progress: OnboardingProgress | None = None
        self._resumed_from: Profile | None = None
        self._write_lock = asyncio.Lock()
        self._listeners: list[ProgressListener] = []

    # =========================================================================
    # Observation
    # =========================================================================

    @property
    def progress(self) -> OnboardingProgress | None:
        """Copy of the current progress; None before start and after finalize."""
        return copy.deepcopy(self._progress)

    @property
    def steps(self) -> tuple[StepDefinition, ...]:
        return self._steps

    @property
    def resumed_from(self) -> Profile | None:
        """Profile read by start(), if any."""
        return self._resumed_from

    @property
    def current_step(self) -> StepDefinition | None:
        if self._progress is None or self._progress.current_step is None:
            return None
        return self._by_id[self._progress.current_step]

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.progress
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Onboarding listener failed: {e}")

    def _require_active(self) -> OnboardingProgress:
        if self._progress is None:
            raise InvalidTransition("Onboarding has not been started or is already finalized")
        return self._progress

    # =========================================================================
    # Transitions
    # =========================================================================

    async def start(self, user_id: str, is_new_user_flow: bool) -> OnboardingProgress:
        """
        Build progress for `user_id`.

        A new-user flow starts empty at the first step and never reads the
        store. A returning user resumes after the last persisted step.

        Raises:
            ReadFailed: store unreachable for a returning user
        """
        step_ids = [step.step_id for step in self._steps]
        self._resumed_from = None

        if is_new_user_flow:
            logger.info(f"Starting fresh onboarding for new user {user_id}")
            progress = OnboardingProgress(steps=step_ids, is_new_user_flow=True)
        else:
            try:
                profile = await self._store.read_profile(user_id)
            except ProfileNotFound:
                profile = None
            except PersistenceError as e:
                logger.error(f"Failed to load onboarding progress for user {user_id}: {e}")
                raise
            self._resumed_from = profile
            progress = self._resume(step_ids, profile)
            logger.info(
                f"Resuming onboarding for user {user_id} at step "
                f"{progress.current_index + 1} of {len(step_ids)}"
            )

        self._user_id = user_id
        self._progress = progress
        self._notify()
        return self.progress

    def _resume(self, step_ids: list[str], profile: Profile | None) -> OnboardingProgress:
        progress = OnboardingProgress(steps=step_ids)
        if profile is None:
            return progress

        if profile.onboarding_completed:
            logger.info(f"User {profile.user_id} already completed onboarding")
            index = len(step_ids)
        else:
            index = resume_index(step_ids, profile.last_completed_step)

        for step in self._steps[:index]:
            try:
                progress.data[step.step_id] = step.normalize(getattr(profile, step.profile_field))
            except (TypeError, ValueError) as e:
                logger.warning(f"Ignoring stored data for step {step.step_id}: {e}")

        progress.current_index = index
        progress.completed_through = index - 1
        return progress

    def update_step_data(self, step_id: str, data: Any) -> OnboardingProgress:
        """
        Replace a step's data in memory. No remote write.

        Raises:
            StepDataInvalid: unknown step or wrongly shaped data
        """
        progress = self._require_active()
        definition = self._by_id.get(step_id)
        if definition is None:
            raise StepDataInvalid(step_id, f"Unknown onboarding step: {step_id}")

        progress.data[step_id] = definition.clean(data)
        self._notify()
        return self.progress

    def current_step_error(self) -> str | None:
        """Why Next is disabled right now, or None if it is allowed."""
        progress = self._require_active()
        definition = self.current_step
        if definition is None:
            return None
        return definition.validate(progress.data.get(definition.step_id, definition.empty()))

    async def advance(self) -> AdvanceResult:
        """
        Complete the current step and move to the next one.

        Raises:
            StepIncomplete: current step fails its rule (nothing changes)
            InvalidTransition: every step is already completed
        """
        progress = self._require_active()
        definition = self.current_step
        if definition is None:
            raise InvalidTransition("All steps are completed; call finalize()")

        value = progress.data.get(definition.step_id, definition.empty())
        message = definition.validate(value)
        if message:
            raise StepIncomplete(definition.step_id, message)

        progress.data[definition.step_id] = value
        progress.completed_through = max(progress.completed_through, progress.current_index)
        progress.mark_pending(definition.step_id)
        progress.current_index += 1
        self._notify()

        error = await self._flush_pending()
        return AdvanceResult(
            step_id=definition.step_id,
            persisted=error is None,
            error=error,
        )

    async def _flush_pending(self) -> PersistenceError | None:
        """Write every pending step in one patch. Returns the failure, if any."""
        async with self._write_lock:
            progress = self._progress
            if progress is None or not progress.pending_steps:
                return None

            to_write = list(progress.pending_steps)
            patch = build_step_patch(
                self._by_id,
                progress.data,
                to_write,
                progress.last_completed_step,
            )
            try:
                await persist_patch(self._store, self._user_id, patch)
            except PersistenceError as e:
                logger.warning(
                    f"Failed to save onboarding steps {to_write} for user {self._user_id}, "
                    f"will retry: {e}"
                )
                return e

            progress.pending_steps = [
                step_id for step_id in progress.pending_steps if step_id not in to_write
            ]
            logger.debug(f"Saved onboarding steps {to_write} for user {self._user_id}")
            return None

    def back(self) -> OnboardingProgress:
        """Go to the previous step. Not persisted."""
        progress = self._require_active()
        if progress.current_index > 0:
            progress.current_index -= 1
            self._notify()
        return self.progress

    async def finalize(self) -> Profile:
        """
        Write all collected data and mark onboarding complete.

        On success the navigation intent flags are cleared and the progress
        is discarded. On failure nothing in memory changes so the caller
        can offer a retry.

        Raises:
            InvalidTransition: not every step is completed
            StepIncomplete: stored data no longer satisfies a step's rule
            WriteFailed: the completion write did not go through
        """
        progress = self._require_active()
        if not progress.ready_to_finalize:
            raise InvalidTransition(
                f"Cannot finalize at step {progress.current_index + 1} of {len(progress.steps)}"
            )

        data = {}
        for step in self._steps:
            data[step.step_id] = step.check(progress.data.get(step.step_id, step.empty()))

        patch = build_completion_patch(self._steps, data)
        async with self._write_lock:
            try:
                profile = await persist_patch(self._store, self._user_id, patch)
            except PersistenceError as e:
                logger.error(f"Failed to complete onboarding for user {self._user_id}: {e}")
                if isinstance(e, WriteFailed):
                    raise
                raise WriteFailed(f"Failed to complete onboarding: {e}") from e

        if self._intent_store is not None:
            clear_navigation_intent(self._intent_store)

        logger.info(f"Onboarding completed for user {self._user_id}")
        self._progress = None
        self._notify()
        return profile
