"""
Onboarding State Management.

OnboardingProgress is the in-memory projection the flow drives. It is
derived from the profile on start (unless this is a fresh registration) and
discarded once onboarding is finalized.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class OnboardingProgress:
    """
    Progress through an ordered list of steps.

    current_index == len(steps) means every step is done and the flow is
    ready to finalize.
    """
    steps: list[str] = field(default_factory=list)
    current_index: int = 0
    data: dict[str, Any] = field(default_factory=dict)
    is_new_user_flow: bool = False

    # Furthest step ever completed (-1: none). Back navigation never lowers it.
    completed_through: int = -1

    # Completed steps whose remote write has not gone through yet
    pending_steps: list[str] = field(default_factory=list)

    @property
    def current_step(self) -> str | None:
        if 0 <= self.current_index < len(self.steps):
            return self.steps[self.current_index]
        return None

    @property
    def ready_to_finalize(self) -> bool:
        return self.current_index == len(self.steps)

    @property
    def last_completed_step(self) -> str | None:
        if self.completed_through < 0:
            return None
        return self.steps[self.completed_through]

    def mark_pending(self, step_id: str) -> None:
        if step_id not in self.pending_steps:
            self.pending_steps.append(step_id)


def resume_index(steps: list[str], last_completed_step: str | None) -> int:
    """
    Index to resume at given the last step persisted as completed.

    Returns len(steps) when the last step was already completed, and 0 when
    nothing was completed or the stored step is no longer configured.
    """
    if not last_completed_step:
        return 0
    if last_completed_step not in steps:
        logger.warning(
            f"Stored onboarding step '{last_completed_step}' is not configured; restarting at first step"
        )
        return 0
    return steps.index(last_completed_step) + 1


def furthest_step(steps: list[str], *candidates: str | None) -> str | None:
    """The candidate that comes latest in the step order."""
    best = None
    best_index = -1
    for candidate in candidates:
        if candidate in steps and steps.index(candidate) > best_index:
            best = candidate
            best_index = steps.index(candidate)
    return best
