"""Tests for onboarding step definitions, normalizers and patches."""

import pytest

from beesides.errors import StepDataInvalid, StepIncomplete
from onboarding.payload import build_completion_patch, build_step_patch
from onboarding.state import OnboardingProgress, furthest_step, resume_index
from onboarding.steps import (
    DEFAULT_STEPS,
    STEP_REGISTRY,
    StepId,
    normalize_artists,
    normalize_genres,
    normalize_legacy_import,
    resolve_steps,
)


STEP_IDS = ["genres", "artists", "importLegacyRatings"]


class TestNormalizers:

    def test_genres_are_a_sorted_set(self):
        assert normalize_genres(["Rock", " Jazz", "Rock", ""]) == ["Jazz", "Rock"]
        assert normalize_genres(None) == []

    def test_artists_keep_order_and_drop_repeats(self):
        assert normalize_artists(["Low", "Slowdive", "low", "Can"]) == ["Low", "Slowdive", "Can"]

    def test_strings_are_not_lists(self):
        with pytest.raises(TypeError):
            normalize_genres("Rock")
        with pytest.raises(TypeError):
            normalize_artists(["Low", 3])

    def test_legacy_import_shapes(self):
        assert normalize_legacy_import(True) == {"imported": True, "source": None, "count": 0}
        assert normalize_legacy_import({"source": "rateyourmusic", "count": 120}) == {
            "imported": True, "source": "rateyourmusic", "count": 120,
        }

    def test_legacy_import_rejects_bad_count(self):
        with pytest.raises(ValueError):
            normalize_legacy_import({"count": -1})
        with pytest.raises(TypeError):
            normalize_legacy_import({"count": "12"})


class TestStepDefinition:

    def test_default_order(self):
        assert [step.step_id for step in DEFAULT_STEPS] == STEP_IDS
        assert [step.value for step in StepId] == STEP_IDS

    def test_check_enforces_rule(self):
        genres = STEP_REGISTRY["genres"]
        with pytest.raises(StepIncomplete) as exc_info:
            genres.check([])
        assert exc_info.value.step_id == "genres"
        assert genres.check(["Dub"]) == ["Dub"]

    def test_clean_wraps_shape_errors(self):
        with pytest.raises(StepDataInvalid):
            STEP_REGISTRY["artists"].clean({"name": "Low"})

    def test_optional_steps_accept_empty(self):
        assert STEP_REGISTRY["artists"].check(None) == []
        assert STEP_REGISTRY["importLegacyRatings"].check(None)["imported"] is False


class TestResolveSteps:

    def test_reorders(self):
        steps = resolve_steps(["importLegacyRatings", "genres"])
        assert [step.step_id for step in steps] == ["importLegacyRatings", "genres"]

    @pytest.mark.parametrize("step_ids", [
        ["genres", "cuisines"],
        ["genres", "genres"],
        [],
    ])
    def test_rejects_bad_configuration(self, step_ids):
        with pytest.raises(ValueError):
            resolve_steps(step_ids)


class TestResumeIndex:

    def test_nothing_completed(self):
        assert resume_index(STEP_IDS, None) == 0

    def test_resumes_after_last_completed(self):
        assert resume_index(STEP_IDS, "genres") == 1
        assert resume_index(STEP_IDS, "importLegacyRatings") == 3

    def test_unknown_step_restarts(self):
        assert resume_index(STEP_IDS, "pantry") == 0

    def test_furthest_step(self):
        assert furthest_step(STEP_IDS, "artists", "genres") == "artists"
        assert furthest_step(STEP_IDS, None, "genres") == "genres"
        assert furthest_step(STEP_IDS, None, "pantry") is None


class TestProgress:

    def test_derived_fields(self):
        progress = OnboardingProgress(steps=STEP_IDS, current_index=1, completed_through=0)
        assert progress.current_step == "artists"
        assert progress.last_completed_step == "genres"
        assert progress.ready_to_finalize is False


class TestPayload:

    def test_step_patch_uses_profile_fields(self):
        patch = build_step_patch(
            STEP_REGISTRY,
            {"genres": ["Jazz"], "artists": ["Low"]},
            ["genres", "artists"],
            "artists",
        )
        assert patch == {
            "preferred_genres": ["Jazz"],
            "favorite_artists": ["Low"],
            "last_completed_step": "artists",
        }

    def test_missing_data_writes_empty_value(self):
        patch = build_step_patch(STEP_REGISTRY, {}, ["artists"], None)
        assert patch == {"favorite_artists": []}

    def test_completion_patch(self):
        data = {step.step_id: step.empty() for step in DEFAULT_STEPS}
        patch = build_completion_patch(DEFAULT_STEPS, data)

        assert patch["onboarding_completed"] is True
        assert patch["last_completed_step"] == "importLegacyRatings"
        assert patch["onboarding_completed_at"]
        assert set(patch) >= {"preferred_genres", "favorite_artists", "legacy_import"}
