"""
Beesides - Core data model.

Session and identity are plain dataclasses owned by the session manager.
Profile is a pydantic model because it round-trips through the remote store.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class SessionStatus(Enum):
    """Lifecycle of the in-memory session."""
    UNINITIALIZED = "uninitialized"
    CHECKING = "checking"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"
    RECOVERING = "recovering"
    FAILED = "failed"           # Identity service unreachable; retryable


@dataclass(frozen=True)
class Identity:
    """Who the identity service says is signed in."""
    user_id: str
    email: str | None = None
    display_name: str = ""
    created_at: str | None = None


@dataclass(frozen=True)
class SessionGrant:
    """
    Result of creating or renewing a session.

    `renewable_credential` is an opaque, revocable token (a refresh token),
    never the user's secret. It is the only part cached locally.
    """
    access_token: str
    renewable_credential: str | None = None
    expires_at: int | None = None


@dataclass(frozen=True)
class Session:
    """
    Immutable snapshot of the authoritative session.

    identity is present if and only if status is AUTHENTICATED.
    """
    status: SessionStatus = SessionStatus.UNINITIALIZED
    identity: Identity | None = None
    initialized: bool = False
    error: str | None = None

    def __post_init__(self):
        authenticated = self.status == SessionStatus.AUTHENTICATED
        if authenticated != (self.identity is not None):
            raise ValueError(
                f"Session identity must be set iff status is authenticated "
                f"(status={self.status.value}, identity={self.identity!r})"
            )

    @property
    def is_authenticated(self) -> bool:
        return self.status == SessionStatus.AUTHENTICATED

    @property
    def is_resolving(self) -> bool:
        """True while the UI should show a loading affordance."""
        return self.status in (
            SessionStatus.UNINITIALIZED,
            SessionStatus.CHECKING,
            SessionStatus.RECOVERING,
        )


class NavigationIntent(Enum):
    """Why the user arrived at the current view."""
    NONE = "none"
    FROM_REGISTRATION = "from_registration"
    RESUME_ONBOARDING = "resume_onboarding"

    @property
    def is_new_user_flow(self) -> bool:
        return self is NavigationIntent.FROM_REGISTRATION

    @property
    def wants_onboarding(self) -> bool:
        return self is not NavigationIntent.NONE


def utc_now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


class Profile(BaseModel):
    """
    One profile document per user, owned by the remote profile store.

    The store row keys the user by `id`; in Python it is `user_id`.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str = Field(alias="id")
    display_name: str = ""
    email: str | None = None
    bio: str = ""
    preferred_genres: set[str] = Field(default_factory=set)
    favorite_artists: list[str] = Field(default_factory=list)
    legacy_import: dict[str, Any] = Field(default_factory=dict)
    onboarding_completed: bool = False
    last_completed_step: str | None = None
    onboarding_completed_at: str | None = None

    @field_serializer("preferred_genres")
    def _serialize_genres(self, genres: set[str]) -> list[str]:
        return sorted(genres)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Profile":
        """Build a profile from a store row, tolerating null columns."""
        cleaned = {key: value for key, value in row.items() if value is not None}
        return cls.model_validate(cleaned)

    def to_row(self) -> dict[str, Any]:
        """Serialize for the store (JSON-safe, `id` key)."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def default_for(cls, user_id: str, identity: Identity | None = None) -> "Profile":
        """Blank profile created the first time a user authenticates."""
        display_name = ""
        email = None
        if identity is not None:
            display_name = identity.display_name
            email = identity.email
        return cls(
            user_id=user_id,
            display_name=display_name or f"user_{user_id[:8]}",
            email=email,
        )
