"""
Beesides Onboarding.

Isolated module for first-run setup. Walks a new (or incomplete) profile
through an ordered list of steps and persists progress to the profile store.

Steps (default order, configurable):
1. genres - preferred genres (at least one required)
2. artists - favorite artists, ordered
3. importLegacyRatings - optional import from a legacy ratings service
"""

from .flow import AdvanceResult, OnboardingFlow
from .state import OnboardingProgress
from .steps import DEFAULT_STEPS, StepDefinition, StepId, resolve_steps

__all__ = [
    "AdvanceResult",
    "DEFAULT_STEPS",
    "OnboardingFlow",
    "OnboardingProgress",
    "StepDefinition",
    "StepId",
    "resolve_steps",
]
