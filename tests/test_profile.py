"""Tests for ProfileManager."""

import pytest

from mneme import MemoryStore
from mneme.models import (
    CandidateEntity,
    LocationPayload,
    NamePayload,
    PetPayload,
    PreferencePayload,
)
from mneme.profile import ProfileManager, is_identity_query


def entity(payload) -> CandidateEntity:
    return CandidateEntity(payload=payload, confidence=0.9, raw_text="")


@pytest.fixture
def profiles(store: MemoryStore) -> ProfileManager:
    return ProfileManager(store)


class TestIdentityQuery:
    """Tests for identity query detection."""

    @pytest.mark.parametrize(
        "query",
        ["What's my name?", "what am I called", "Who am I?", "Do you know me?", "remember me?"],
    )
    def test_identity_queries(self, query: str):
        assert is_identity_query(query)

    def test_other_queries(self):
        assert not is_identity_query("Tell me about my cats")


class TestProfileManager:
    """Tests for profile updates."""

    def test_empty_profile(self, profiles: ProfileManager):
        profile = profiles.get("u1")
        assert profile.user_id == "u1"
        assert profile.name is None
        assert profiles.lookup_name("u1") is None

    def test_name_is_recorded(self, profiles: ProfileManager):
        profiles.record_entities("u1", [entity(NamePayload(name="Clemens"))])
        assert profiles.lookup_name("u1") == "Clemens"

    def test_latest_name_wins(self, profiles: ProfileManager):
        profiles.record_entities("u1", [entity(NamePayload(name="Clem"))])
        profiles.record_entities("u1", [entity(NamePayload(name="Clemens"))])
        assert profiles.lookup_name("u1") == "Clemens"

    def test_preferences_accumulate(self, profiles: ProfileManager):
        profiles.record_entities("u1", [entity(PreferencePayload(sentiment="likes", value="hiking"))])
        profiles.record_entities("u1", [entity(PreferencePayload(sentiment="likes", value="chess"))])
        profiles.record_entities("u1", [entity(PreferencePayload(sentiment="dislikes", value="mushrooms"))])
        assert profiles.get("u1").preferences == {"likes": ["hiking", "chess"], "dislikes": ["mushrooms"]}

    def test_single_valued_facts_by_slot(self, profiles: ProfileManager):
        profiles.record_entities("u1", [entity(LocationPayload(kind="residence", place="Vienna"))])
        profiles.record_entities("u1", [entity(LocationPayload(kind="residence", place="Berlin"))])
        assert profiles.get("u1").facts == {"location:residence": "Lives in: Berlin"}

    def test_pets_are_not_profiled(self, profiles: ProfileManager):
        assert profiles.record_entities("u1", [entity(PetPayload(name="Holly", species="cat"))]) is None

    def test_unchanged_returns_none(self, profiles: ProfileManager):
        profiles.record_entities("u1", [entity(NamePayload(name="Clemens"))])
        assert profiles.record_entities("u1", [entity(NamePayload(name="Clemens"))]) is None

    def test_profile_isolated_per_user(self, profiles: ProfileManager):
        profiles.record_entities("u1", [entity(NamePayload(name="Clemens"))])
        assert profiles.lookup_name("u2") is None
