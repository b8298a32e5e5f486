"""
Beesides - Backend access.

Protocols for the remote identity service and profile store, plus the
Supabase implementations used in production.
"""

from beesides.db.adapter import IdentityService, ProfileStore
from beesides.db.client import (
    SupabaseIdentityService,
    SupabaseProfileStore,
    get_client,
)

__all__ = [
    "IdentityService",
    "ProfileStore",
    "SupabaseIdentityService",
    "SupabaseProfileStore",
    "get_client",
]
