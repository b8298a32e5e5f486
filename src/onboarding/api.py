"""
Onboarding API Endpoints.

Server-side counterpart of the onboarding flow for thin clients: read the
resume projection, persist one step, or complete onboarding in one call.
Uses the same step definitions and patches as OnboardingFlow.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from beesides.config import settings
from beesides.db.adapter import ProfileStore
from beesides.db.client import SupabaseProfileStore, get_authenticated_client
from beesides.errors import PersistenceError, ProfileNotFound, ValidationError
from beesides.web.auth import AuthenticatedUser, get_current_user

from .flow import OnboardingFlow, persist_patch
from .payload import build_completion_patch, build_step_patch
from .state import furthest_step
from .steps import StepDefinition, resolve_steps

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/onboarding", tags=["onboarding"])


# =============================================================================
# Dependencies
# =============================================================================


def get_profile_store(user: AuthenticatedUser = Depends(get_current_user)) -> ProfileStore:
    """Profile store acting as the requesting user."""
    return SupabaseProfileStore(get_authenticated_client(user.access_token))


def get_onboarding_steps() -> tuple[StepDefinition, ...]:
    """Configured step order."""
    return resolve_steps(settings.onboarding_steps)


# =============================================================================
# Request/Response Models
# =============================================================================


class StepOption(BaseModel):
    """One step as shown in the wizard header."""
    step: str
    title: str


class ProgressResponse(BaseModel):
    """Resume projection for the current user."""
    user_id: str
    steps: list[str]
    current_index: int
    current_step: str | None
    data: dict[str, Any]
    last_completed_step: str | None
    onboarding_completed: bool


class StepRequest(BaseModel):
    """Data for a single completed step."""
    step: str
    data: Any = None


class StepResponse(BaseModel):
    success: bool
    step: str
    last_completed_step: str | None


class CompleteRequest(BaseModel):
    """Data for every step, keyed by step id."""
    data: dict[str, Any] = Field(default_factory=dict)


class CompleteResponse(BaseModel):
    success: bool
    onboarding_completed: bool
    onboarding_completed_at: str | None


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/steps", response_model=list[StepOption])
async def get_steps(
    steps: tuple[StepDefinition, ...] = Depends(get_onboarding_steps),
) -> list[StepOption]:
    """Configured steps in order."""
    return [StepOption(step=step.step_id, title=step.title) for step in steps]


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(
    user: AuthenticatedUser = Depends(get_current_user),
    store: ProfileStore = Depends(get_profile_store),
    steps: tuple[StepDefinition, ...] = Depends(get_onboarding_steps),
) -> ProgressResponse:
    """Where the user would resume onboarding."""
    flow = OnboardingFlow(store, steps)
    try:
        progress = await flow.start(user.id, is_new_user_flow=False)
    except PersistenceError as e:
        logger.error(f"Error fetching onboarding progress: {e}")
        raise HTTPException(status_code=503, detail="Failed to fetch onboarding progress")

    profile = flow.resumed_from
    return ProgressResponse(
        user_id=user.id,
        steps=progress.steps,
        current_index=progress.current_index,
        current_step=progress.current_step,
        data=progress.data,
        last_completed_step=progress.last_completed_step,
        onboarding_completed=bool(profile and profile.onboarding_completed),
    )


@router.post("/step", response_model=StepResponse)
async def save_step(
    request: StepRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    store: ProfileStore = Depends(get_profile_store),
    steps: tuple[StepDefinition, ...] = Depends(get_onboarding_steps),
) -> StepResponse:
    """Persist one step and move the resume pointer forward (never back)."""
    definitions = {step.step_id: step for step in steps}
    definition = definitions.get(request.step)
    if definition is None:
        raise HTTPException(status_code=400, detail=f"Unknown step: {request.step}")

    try:
        value = definition.check(request.data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Updating onboarding step {request.step} for user {user.id}")

    try:
        stored_last = (await store.read_profile(user.id)).last_completed_step
    except ProfileNotFound:
        stored_last = None
    except PersistenceError as e:
        logger.error(f"Error reading profile before step update: {e}")
        raise HTTPException(status_code=503, detail="Failed to update onboarding step")

    order = [step.step_id for step in steps]
    last_completed = furthest_step(order, stored_last, request.step)
    patch = build_step_patch(definitions, {request.step: value}, [request.step], last_completed)

    try:
        await persist_patch(store, user.id, patch)
    except PersistenceError as e:
        logger.error(f"Error updating onboarding step {request.step}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update onboarding step")

    return StepResponse(success=True, step=request.step, last_completed_step=last_completed)


@router.post("/complete", response_model=CompleteResponse)
async def complete_onboarding(
    request: CompleteRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    store: ProfileStore = Depends(get_profile_store),
    steps: tuple[StepDefinition, ...] = Depends(get_onboarding_steps),
) -> CompleteResponse:
    """Validate every step and mark onboarding complete in one write."""
    data = {}
    try:
        for step in steps:
            data[step.step_id] = step.check(request.data.get(step.step_id))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"{e.step_id}: {e}")

    logger.info(f"Completing onboarding for user {user.id}")

    try:
        profile = await persist_patch(store, user.id, build_completion_patch(steps, data))
    except PersistenceError as e:
        logger.error(f"Error completing onboarding: {e}")
        raise HTTPException(status_code=500, detail="Failed to complete onboarding")

    return CompleteResponse(
        success=True,
        onboarding_completed=profile.onboarding_completed,
        onboarding_completed_at=profile.onboarding_completed_at,
    )
