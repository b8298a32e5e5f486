"""Tests for the typer CLI, wired to the in-memory fakes."""

import pytest
from typer.testing import CliRunner

from beesides import main
from beesides.session import SessionManager
from beesides.storage import CREDENTIAL_KEY, MemoryKeyValueStore, read_navigation_intent
from beesides.models import NavigationIntent


runner = CliRunner()


@pytest.fixture
def cli_context(monkeypatch, identity_service, profile_store, credentials):
    intent_store = MemoryKeyValueStore()

    def _build_context():
        # A new manager per command, like a new process
        return main._Context(
            manager=SessionManager(identity_service, profile_store, credentials),
            profiles=profile_store,
            intent_store=intent_store,
        )

    monkeypatch.setattr(main, "_build_context", _build_context)
    return intent_store


def test_version():
    result = runner.invoke(main.app, ["version"])
    assert result.exit_code == 0
    assert "Beesides version" in result.output


def test_health():
    result = runner.invoke(main.app, ["health"])
    assert result.exit_code == 0
    assert "Configuration loaded" in result.output
    assert "genres, artists, importLegacyRatings" in result.output


def test_status_when_signed_out(cli_context):
    result = runner.invoke(main.app, ["status"])
    assert result.exit_code == 0
    assert "anonymous" in result.output
    assert "to_login" in result.output


def test_login_then_status(cli_context, durable_store):
    result = runner.invoke(main.app, ["login", "ada@example.com"], input="correct-horse\n")
    assert result.exit_code == 0
    assert "Signed in as" in result.output
    assert durable_store.get(CREDENTIAL_KEY)

    result = runner.invoke(main.app, ["status"])
    assert "authenticated" in result.output
    assert "to_onboarding" in result.output


def test_login_wrong_password(cli_context):
    result = runner.invoke(main.app, ["login", "ada@example.com"], input="wrong\n")
    assert result.exit_code == 1
    assert "Login failed" in result.output


def test_register_marks_registration_intent(cli_context):
    result = runner.invoke(
        main.app,
        ["register", "grace@example.com", "--name", "Grace"],
        input="hopper-123\nhopper-123\n",
    )
    assert result.exit_code == 0
    assert read_navigation_intent(cli_context) == NavigationIntent.FROM_REGISTRATION


def test_onboard_requires_sign_in(cli_context):
    result = runner.invoke(main.app, ["onboard"])
    assert result.exit_code == 1
    assert "Not signed in" in result.output


def test_register_then_onboard(cli_context, profile_store):
    runner.invoke(
        main.app,
        ["register", "grace@example.com", "--name", "Grace"],
        input="hopper-123\nhopper-123\n",
    )

    # genres (empty first, rejected), artists, legacy import count
    result = runner.invoke(main.app, ["onboard"], input="\nJazz, Dub\nLow\n0\n")
    assert result.exit_code == 0, result.output
    assert "Please select at least one genre" in result.output
    assert "Onboarding complete" in result.output

    (row,) = profile_store.rows.values()
    assert row["onboarding_completed"] is True
    assert row["preferred_genres"] == ["Dub", "Jazz"]
    assert read_navigation_intent(cli_context) == NavigationIntent.NONE


def test_logout(cli_context, durable_store):
    runner.invoke(main.app, ["login", "ada@example.com"], input="correct-horse\n")

    result = runner.invoke(main.app, ["logout"])
    assert result.exit_code == 0
    assert durable_store.get(CREDENTIAL_KEY) is None


def test_skip_onboarding_clears_intent_and_keeps_progress(cli_context, profile_store):
    runner.invoke(
        main.app,
        ["register", "grace@example.com", "--name", "Grace"],
        input="hopper-123\nhopper-123\n",
    )
    # Save the genres step; input runs out at artists
    runner.invoke(main.app, ["onboard"], input="Jazz\n")

    result = runner.invoke(main.app, ["skip-onboarding"])
    assert result.exit_code == 0
    assert "Onboarding skipped" in result.output
    assert read_navigation_intent(cli_context) == NavigationIntent.NONE

    (row,) = profile_store.rows.values()
    assert row["onboarding_completed"] is False
    assert row["last_completed_step"] == "genres"


def test_skip_onboarding_without_intent(cli_context):
    result = runner.invoke(main.app, ["skip-onboarding"])
    assert result.exit_code == 0
    assert "No onboarding in progress" in result.output
