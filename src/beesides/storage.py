"""
Beesides - Local key-value storage.

The UI host provides durable storage (survives reloads) and a shorter-lived
per-tab store. Both are consumed through the KeyValueStore protocol.

Keys owned here:
- needs_onboarding / registration_complete: navigation intent flags, set by
  the registration screen and cleared when onboarding is finalized or when
  the user explicitly leaves it (leave_onboarding)
- beesides.auth.renewable_credential: opaque refresh token for recovery
"""

import json
import logging
import os
from pathlib import Path
from typing import Protocol, runtime_checkable

from beesides.models import NavigationIntent

logger = logging.getLogger(__name__)


NEEDS_ONBOARDING_FLAG = "needs_onboarding"
REGISTRATION_COMPLETE_FLAG = "registration_complete"
CREDENTIAL_KEY = "beesides.auth.renewable_credential"


@runtime_checkable
class KeyValueStore(Protocol):
    """String key-value storage provided by the host."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryKeyValueStore:
    """Process-lifetime store. Stands in for per-tab storage."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileKeyValueStore:
    """
    Durable store backed by a single JSON file.

    Every mutation rewrites the file through a temp file + rename so a crash
    mid-write never leaves a truncated store behind.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable key-value store {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed key-value store {self.path}")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._data, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._flush()


# =============================================================================
# Navigation intent
# =============================================================================


def read_navigation_intent(store: KeyValueStore) -> NavigationIntent:
    """
    Collapse the two legacy flags into one intent.

    A fresh registration wins over a plain resume when both are present.
    """
    if store.get(REGISTRATION_COMPLETE_FLAG) == "true":
        return NavigationIntent.FROM_REGISTRATION
    if store.get(NEEDS_ONBOARDING_FLAG) == "true":
        return NavigationIntent.RESUME_ONBOARDING
    return NavigationIntent.NONE


def mark_navigation_intent(store: KeyValueStore, intent: NavigationIntent) -> None:
    """Record why the user is heading to onboarding (registration screen)."""
    if intent is NavigationIntent.NONE:
        clear_navigation_intent(store)
        return
    store.set(NEEDS_ONBOARDING_FLAG, "true")
    if intent is NavigationIntent.FROM_REGISTRATION:
        store.set(REGISTRATION_COMPLETE_FLAG, "true")
    else:
        store.delete(REGISTRATION_COMPLETE_FLAG)


def clear_navigation_intent(store: KeyValueStore) -> None:
    """Remove both intent flags together."""
    store.delete(NEEDS_ONBOARDING_FLAG)
    store.delete(REGISTRATION_COMPLETE_FLAG)


def leave_onboarding(store: KeyValueStore) -> NavigationIntent:
    """
    Explicit navigation away from onboarding.

    Drops the intent flags without touching the profile, so steps already
    saved are resumed the next time the user opens onboarding. Returns the
    intent that was dropped.
    """
    intent = read_navigation_intent(store)
    if intent is not NavigationIntent.NONE:
        logger.info(f"Leaving onboarding, dropping {intent.value} intent")
    clear_navigation_intent(store)
    return intent


# =============================================================================
# Renewable credential cache
# =============================================================================


class CredentialCache:
    """Namespaced slot for the renewable credential in a durable store."""

    def __init__(self, store: KeyValueStore, key: str = CREDENTIAL_KEY):
        self._store = store
        self._key = key

    def get(self) -> str | None:
        return self._store.get(self._key) or None

    def save(self, credential: str | None) -> None:
        if credential:
            self._store.set(self._key, credential)
        else:
            self.clear()

    def clear(self) -> None:
        self._store.delete(self._key)
