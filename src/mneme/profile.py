"""Denormalized user profile for O(1) identity lookups."""

import logging
from typing import Sequence

from .models import (
    CandidateEntity,
    EntityType,
    NamePayload,
    PreferencePayload,
    UserProfile,
)
from .store import MemoryStore

logger = logging.getLogger(__name__)

IDENTITY_PHRASES = (
    "my name",
    "what am i called",
    "who am i",
    "do you know me",
    "remember me",
)


def is_identity_query(query: str) -> bool:
    """Check whether a query asks who the user is."""
    lowered = query.lower()
    return any(phrase in lowered for phrase in IDENTITY_PHRASES)


class ProfileManager:
    """Keeps the user profile in step with extracted entities.

    The profile is a secondary cache: categories remain the source of
    truth, but the preferred name is answered from here without any
    similarity search.
    """

    def __init__(self, store: MemoryStore) -> None:
        """Initialize with a memory store.

        Args:
            store: The MemoryStore for persistence.
        """
        self.store = store

    def get(self, user_id: str) -> UserProfile:
        """Get the user's profile, or an empty one if none is stored."""
        return self.store.get_profile(user_id) or UserProfile(user_id=user_id)

    def lookup_name(self, user_id: str) -> str | None:
        profile = self.store.get_profile(user_id)
        return profile.name if profile else None

    def record_entities(self, user_id: str, entities: Sequence[CandidateEntity]) -> UserProfile | None:
        """Fold entities into the profile.

        Names overwrite the preferred name (most recent wins), preferences
        accumulate per sentiment, and other single-valued facts are kept
        under their slot key.

        Returns:
            The stored profile, or None if nothing changed.
        """
        profile = self.get(user_id)
        changed = False

        for entity in entities:
            payload = entity.payload
            if isinstance(payload, NamePayload):
                if profile.name != payload.name:
                    profile.name = payload.name
                    changed = True
            elif isinstance(payload, PreferencePayload) and payload.sentiment != "favorite":
                values = profile.preferences.setdefault(payload.sentiment, [])
                if payload.value not in values:
                    values.append(payload.value)
                    changed = True
            elif entity.type is not EntityType.PET:
                slot = payload.slot()
                if slot and profile.facts.get(slot) != payload.describe():
                    profile.facts[slot] = payload.describe()
                    changed = True

        if not changed:
            return None

        logger.debug("Updated profile for user %s", user_id)
        return self.store.upsert_profile(profile)
