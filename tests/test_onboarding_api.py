"""
Tests for the onboarding HTTP endpoints.

Auth and the profile store are swapped through FastAPI dependency
overrides; the store is the in-memory fake from conftest.
"""

import pytest
from fastapi.testclient import TestClient

from beesides.web.app import app
from beesides.web.auth import AuthenticatedUser, get_current_user
from onboarding.api import get_profile_store


USER_ID = "user-0001-ada"


@pytest.fixture
def client(profile_store):
    app.dependency_overrides[get_current_user] = lambda: AuthenticatedUser(
        id=USER_ID, email="ada@example.com", access_token="access-1"
    )
    app.dependency_overrides[get_profile_store] = lambda: profile_store
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAppRoutes:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_me(self, client):
        assert client.get("/me").json() == {"id": USER_ID, "email": "ada@example.com"}

    def test_missing_token_is_rejected(self):
        response = TestClient(app).get("/me")
        assert response.status_code == 401

    def test_malformed_token_is_rejected(self):
        response = TestClient(app).get("/me", headers={"Authorization": "Token abc"})
        assert response.status_code == 401


class TestProgress:

    def test_steps(self, client):
        steps = client.get("/onboarding/steps").json()
        assert [s["step"] for s in steps] == ["genres", "artists", "importLegacyRatings"]

    def test_resume_projection(self, client, profile_store):
        profile_store.seed(USER_ID, preferred_genres={"Jazz"}, last_completed_step="genres")

        body = client.get("/onboarding/progress").json()
        assert body["current_index"] == 1
        assert body["current_step"] == "artists"
        assert body["data"] == {"genres": ["Jazz"]}
        assert body["onboarding_completed"] is False

    def test_new_profile_starts_at_first_step(self, client):
        body = client.get("/onboarding/progress").json()
        assert body["current_step"] == "genres"
        assert body["last_completed_step"] is None

    def test_store_unavailable(self, client, profile_store):
        profile_store.fail_reads = 1
        assert client.get("/onboarding/progress").status_code == 503


class TestSaveStep:

    def test_saves_step(self, client, profile_store):
        profile_store.seed(USER_ID)

        response = client.post("/onboarding/step", json={"step": "genres", "data": ["Jazz", "Dub"]})
        assert response.status_code == 200
        assert response.json()["last_completed_step"] == "genres"
        assert profile_store.rows[USER_ID]["preferred_genres"] == ["Dub", "Jazz"]

    def test_pointer_never_moves_back(self, client, profile_store):
        profile_store.seed(USER_ID, last_completed_step="artists")

        response = client.post("/onboarding/step", json={"step": "genres", "data": ["Jazz"]})
        assert response.json()["last_completed_step"] == "artists"
        assert profile_store.rows[USER_ID]["last_completed_step"] == "artists"

    def test_creates_missing_profile(self, client, profile_store):
        response = client.post("/onboarding/step", json={"step": "artists", "data": ["Low"]})
        assert response.status_code == 200
        assert profile_store.rows[USER_ID]["favorite_artists"] == ["Low"]

    def test_validation_error(self, client, profile_store):
        response = client.post("/onboarding/step", json={"step": "genres", "data": []})
        assert response.status_code == 400
        assert response.json()["detail"] == "Please select at least one genre"
        assert profile_store.calls["update_profile"] == 0

    def test_unknown_step(self, client):
        response = client.post("/onboarding/step", json={"step": "pantry", "data": {}})
        assert response.status_code == 400

    def test_write_failure(self, client, profile_store):
        profile_store.seed(USER_ID)
        profile_store.fail_writes = 1

        response = client.post("/onboarding/step", json={"step": "genres", "data": ["Jazz"]})
        assert response.status_code == 500


class TestComplete:

    def test_completes(self, client, profile_store):
        profile_store.seed(USER_ID)

        response = client.post("/onboarding/complete", json={"data": {
            "genres": ["Jazz"],
            "artists": ["Low"],
            "importLegacyRatings": {"source": "rateyourmusic", "count": 42},
        }})
        assert response.status_code == 200
        body = response.json()
        assert body["onboarding_completed"] is True
        assert body["onboarding_completed_at"]

        row = profile_store.rows[USER_ID]
        assert row["last_completed_step"] == "importLegacyRatings"
        assert row["legacy_import"]["count"] == 42

    def test_missing_genres(self, client, profile_store):
        response = client.post("/onboarding/complete", json={"data": {"artists": ["Low"]}})
        assert response.status_code == 400
        assert response.json()["detail"].startswith("genres:")
        assert profile_store.calls["update_profile"] == 0

    def test_write_failure(self, client, profile_store):
        profile_store.seed(USER_ID)
        profile_store.fail_writes = 1

        response = client.post("/onboarding/complete", json={"data": {"genres": ["Jazz"]}})
        assert response.status_code == 500
