"""
Beesides - Error taxonomy.

Backend adapters translate SDK and network exceptions into these classes so
the session manager, onboarding flow and UI never inspect raw exceptions.
"""


class BeesidesError(Exception):
    """Base class for every error raised by this package."""


# =============================================================================
# Authentication
# =============================================================================


class AuthError(BeesidesError):
    """Identity service rejected or could not serve a request."""


class InvalidCredentials(AuthError):
    """Identifier/secret pair (or renewable credential) was not accepted."""


class RegistrationRejected(AuthError):
    """Account creation refused: duplicate identifier, weak secret, etc."""


class Unreachable(AuthError):
    """Identity service could not be reached. Retryable."""


class SessionMissing(AuthError):
    """No active session, or the current one is no longer authorized."""


class RecoveryFailed(AuthError):
    """Password recovery could not be started or confirmed."""


# =============================================================================
# Onboarding validation
# =============================================================================


class ValidationError(BeesidesError):
    """Step data does not satisfy the step's rule. Never touches the store."""

    def __init__(self, step_id: str, message: str):
        super().__init__(message)
        self.step_id = step_id


class StepIncomplete(ValidationError):
    """Step is missing a required selection."""


class StepDataInvalid(ValidationError):
    """Step data has the wrong shape."""


# =============================================================================
# Profile persistence
# =============================================================================


class PersistenceError(BeesidesError):
    """Profile store read or write failed."""


class WriteFailed(PersistenceError):
    """Profile update or create did not go through. Retryable."""


class ReadFailed(PersistenceError):
    """Profile could not be read. Retryable."""


class ProfileNotFound(PersistenceError):
    """No profile document exists for the user."""


class ProfileAlreadyExists(PersistenceError):
    """Create lost a race: the store already holds a profile for the user."""


class InvalidTransition(BeesidesError):
    """Operation is not valid in the flow's current state."""
