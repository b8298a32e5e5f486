"""
Onboarding Payload Definition.

Builds the profile patches the flow writes: one per completed step (with
any earlier steps whose write failed) and one on completion.
"""

from typing import Any, Iterable, Mapping, Sequence

from beesides.models import utc_now_iso

from .steps import StepDefinition


def build_step_patch(
    definitions: Mapping[str, StepDefinition],
    data: Mapping[str, Any],
    step_ids: Iterable[str],
    last_completed_step: str | None,
) -> dict[str, Any]:
    """
    Patch persisting the given steps' data and the resume pointer.

    Args:
        definitions: Step definitions by id
        data: Canonical step data by id
        step_ids: Steps to include (current step plus pending retries)
        last_completed_step: Furthest completed step, stored for resumption
    """
    patch: dict[str, Any] = {}
    for step_id in step_ids:
        definition = definitions[step_id]
        patch[definition.profile_field] = data.get(step_id, definition.empty())
    if last_completed_step:
        patch["last_completed_step"] = last_completed_step
    return patch


def build_completion_patch(
    steps: Sequence[StepDefinition],
    data: Mapping[str, Any],
) -> dict[str, Any]:
    """Patch writing every step's data and marking onboarding complete."""
    patch = build_step_patch(
        {step.step_id: step for step in steps},
        data,
        [step.step_id for step in steps],
        steps[-1].step_id,
    )
    patch["onboarding_completed"] = True
    patch["onboarding_completed_at"] = utc_now_iso()
    return patch
