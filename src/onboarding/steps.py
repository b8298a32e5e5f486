"""
Onboarding Step Configuration.

Each step is a StepDefinition: where its data lands on the profile, how raw
UI input is normalized, and the rule that gates Next. The flow consumes an
ordered list of definitions, so steps are added/removed/reordered here (or
through settings.onboarding_steps) without touching transition logic.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable

from beesides.errors import StepDataInvalid, StepIncomplete


class StepId(str, Enum):
    """Known onboarding steps."""
    GENRES = "genres"
    ARTISTS = "artists"
    IMPORT_LEGACY_RATINGS = "importLegacyRatings"


@dataclass(frozen=True)
class StepDefinition:
    """One step of the onboarding wizard."""
    step_id: str
    title: str
    profile_field: str                      # Profile attribute the data is persisted to
    normalize: Callable[[Any], Any]         # Raw input -> canonical JSON-safe value
    validate: Callable[[Any], str | None]   # Canonical value -> error message or None

    def empty(self) -> Any:
        """Canonical value before the user has touched the step."""
        return self.normalize(None)

    def clean(self, value: Any) -> Any:
        """Normalize raw input, raising StepDataInvalid on a bad shape."""
        try:
            return self.normalize(value)
        except (TypeError, ValueError) as e:
            raise StepDataInvalid(self.step_id, str(e)) from e

    def check(self, value: Any) -> Any:
        """Normalize and validate; returns the canonical value."""
        cleaned = self.clean(value)
        message = self.validate(cleaned)
        if message:
            raise StepIncomplete(self.step_id, message)
        return cleaned


# =============================================================================
# Normalizers
# =============================================================================


def _string_items(value: Any, label: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)):
        raise TypeError(f"{label} must be a list of strings")
    items = []
    for item in value:
        if not isinstance(item, str):
            raise TypeError(f"{label} must be a list of strings, got {type(item).__name__}")
        item = item.strip()
        if item:
            items.append(item)
    return items


def normalize_genres(value: Any) -> list[str]:
    """Genres are a set; stored sorted for stable writes."""
    return sorted(set(_string_items(value, "genres")))


def normalize_artists(value: Any) -> list[str]:
    """Artists keep the user's order; repeats keep the first position."""
    seen: set[str] = set()
    ordered = []
    for artist in _string_items(value, "artists"):
        key = artist.casefold()
        if key not in seen:
            seen.add(key)
            ordered.append(artist)
    return ordered


def normalize_legacy_import(value: Any) -> dict[str, Any]:
    """Outcome of importing ratings from a legacy service (e.g. RateYourMusic)."""
    if value is None:
        return {"imported": False, "source": None, "count": 0}
    if isinstance(value, bool):
        return {"imported": value, "source": None, "count": 0}
    if not isinstance(value, dict):
        raise TypeError("importLegacyRatings must be a boolean or an object")

    source = value.get("source")
    if source is not None and not isinstance(source, str):
        raise TypeError("importLegacyRatings.source must be a string")
    count = value.get("count", 0)
    if isinstance(count, bool) or not isinstance(count, int):
        raise TypeError("importLegacyRatings.count must be an integer")
    if count < 0:
        raise ValueError("importLegacyRatings.count cannot be negative")
    return {
        "imported": bool(value.get("imported", count > 0)),
        "source": source or None,
        "count": count,
    }


# =============================================================================
# Validators
# =============================================================================


def require_selection(value: list[str]) -> str | None:
    if not value:
        return "Please select at least one genre"
    return None


def always_valid(value: Any) -> str | None:
    return None


# =============================================================================
# Registry
# =============================================================================


STEP_REGISTRY: dict[str, StepDefinition] = {
    StepId.GENRES.value: StepDefinition(
        step_id=StepId.GENRES.value,
        title="What kind of music do you like?",
        profile_field="preferred_genres",
        normalize=normalize_genres,
        validate=require_selection,
    ),
    StepId.ARTISTS.value: StepDefinition(
        step_id=StepId.ARTISTS.value,
        title="Select some artists you enjoy",
        profile_field="favorite_artists",
        normalize=normalize_artists,
        validate=always_valid,
    ),
    StepId.IMPORT_LEGACY_RATINGS.value: StepDefinition(
        step_id=StepId.IMPORT_LEGACY_RATINGS.value,
        title="Import your RateYourMusic data",
        profile_field="legacy_import",
        normalize=normalize_legacy_import,
        validate=always_valid,
    ),
}

DEFAULT_STEPS: tuple[StepDefinition, ...] = tuple(
    STEP_REGISTRY[step.value] for step in StepId
)


def resolve_steps(step_ids: Iterable[str]) -> tuple[StepDefinition, ...]:
    """
    Turn configured step ids into definitions.

    Raises:
        ValueError: unknown or repeated step id, or an empty list
    """
    resolved = []
    seen = set()
    for step_id in step_ids:
        if step_id not in STEP_REGISTRY:
            raise ValueError(f"Unknown onboarding step: {step_id}")
        if step_id in seen:
            raise ValueError(f"Onboarding step listed twice: {step_id}")
        seen.add(step_id)
        resolved.append(STEP_REGISTRY[step_id])
    if not resolved:
        raise ValueError("At least one onboarding step is required")
    return tuple(resolved)
