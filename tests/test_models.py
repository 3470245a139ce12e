"""Tests for memory data models."""

from datetime import timedelta

import pytest

from mneme.models import (
    Category,
    CategoryEmbedding,
    CategoryKind,
    EntityType,
    Fact,
    LocationPayload,
    NamePayload,
    PetPayload,
    PreferencePayload,
    RelationshipPayload,
    payload_from_dict,
    utcnow,
)


class TestPayloads:
    """Tests for the typed fact payloads."""

    def test_payload_entity_type(self):
        """Each payload class knows its family."""
        assert NamePayload(name="Clemens").entity_type is EntityType.NAME
        assert PetPayload(name="Holly", species="cat").entity_type is EntityType.PET

    def test_pet_describe_uses_article(self):
        """Pet descriptions pick a or an."""
        assert PetPayload(name="Holly", species="cat").describe() == "Pet: Holly is a cat"
        assert PetPayload(name="Ozzy", species="iguana").describe() == "Pet: Ozzy is an iguana"

    def test_slots_for_single_valued_facts(self):
        """Names and residences have slots; pets do not."""
        assert NamePayload(name="Clemens").slot() == "name"
        assert LocationPayload(kind="residence", place="Berlin").slot() == "location:residence"
        assert PetPayload(name="Holly", species="cat").slot() is None

    def test_relationship_slot_only_for_unique_roles(self):
        """A wife is single-valued, friends are not."""
        assert RelationshipPayload(relationship="wife", name="Anna").slot() == "relationship:wife"
        assert RelationshipPayload(relationship="friend", name="Tom").slot() is None

    def test_preference_to_dict_drops_unset_subject(self):
        """to_dict omits None fields."""
        payload = PreferencePayload(sentiment="likes", value="hiking")
        assert payload.to_dict() == {"sentiment": "likes", "value": "hiking"}

    def test_payload_from_dict(self):
        """payload_from_dict rebuilds the right class from a string family."""
        payload = payload_from_dict("pet", {"name": "Benny", "species": "cat"})
        assert payload == PetPayload(name="Benny", species="cat")

    def test_payload_from_dict_ignores_unknown_keys(self):
        """Extra keys in stored data are ignored."""
        payload = payload_from_dict(EntityType.NAME, {"name": "Clemens", "legacy": 1})
        assert payload == NamePayload(name="Clemens")

    def test_payload_from_dict_missing_field(self):
        """Missing required fields raise ValueError."""
        with pytest.raises(ValueError):
            payload_from_dict("pet", {"name": "Benny"})

    def test_payload_from_dict_unknown_family(self):
        """Unknown families raise ValueError."""
        with pytest.raises(ValueError):
            payload_from_dict("hobby", {"value": "chess"})


class TestFact:
    """Tests for Fact serialization."""

    def test_to_dict_shape(self):
        """to_dict stores type, value and provenance."""
        fact = Fact(payload=NamePayload(name="Clemens"), confidence=0.95, raw_text="My name is Clemens")
        data = fact.to_dict()
        assert data["type"] == "name"
        assert data["value"] == {"name": "Clemens"}
        assert data["confidence"] == 0.95
        assert data["raw_text"] == "My name is Clemens"
        assert "recorded_at" in data

    def test_from_dict_restores_fact(self):
        """from_dict restores payload, confidence and timestamp."""
        fact = Fact(payload=PetPayload(name="Holly", species="cat"), confidence=0.9, raw_text="x")
        restored = Fact.from_dict(fact.to_dict())
        assert restored == fact

    def test_from_dict_without_timestamp(self):
        """A missing recorded_at defaults to now."""
        restored = Fact.from_dict({"type": "name", "value": {"name": "Clemens"}})
        assert restored.recorded_at is not None
        assert restored.confidence == 0.0


class TestCategory:
    """Tests for Category."""

    def test_fact_count_follows_facts(self):
        """fact_count is always the length of the fact list."""
        category = Category(id="c1", user_id="u1", name="Pets and Animals", kind=CategoryKind.SUB)
        assert category.fact_count == 0
        category.facts.append(
            Fact(payload=PetPayload(name="Holly", species="cat"), confidence=0.9, raw_text="")
        )
        assert category.fact_count == 1

    def test_is_general(self):
        """Only general-kind categories report is_general."""
        general = Category(id="g", user_id="u1", name="General Knowledge", kind=CategoryKind.GENERAL)
        primary = Category(id="p", user_id="u1", name="Professional", kind=CategoryKind.PRIMARY)
        assert general.is_general
        assert not primary.is_general


class TestCategoryEmbedding:
    """Tests for embedding freshness."""

    def test_recent_embedding_is_fresh(self):
        """An embedding younger than the window is fresh."""
        embedding = CategoryEmbedding(category_id="c1", vector=[1.0], content="x")
        assert embedding.is_fresh(timedelta(hours=1))

    def test_old_embedding_is_stale(self):
        """An embedding older than the window is stale."""
        embedding = CategoryEmbedding(
            category_id="c1",
            vector=[1.0],
            content="x",
            created_at=utcnow() - timedelta(hours=2),
        )
        assert not embedding.is_fresh(timedelta(hours=1))
