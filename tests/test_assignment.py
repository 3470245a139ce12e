"""Tests for CategoryAssigner."""

from mneme import MemoryStore
from mneme.assignment import CategoryAssigner
from mneme.models import (
    CandidateEntity,
    CategoryKind,
    NamePayload,
    PetPayload,
    PreferencePayload,
)


def entity(payload, confidence: float = 0.9) -> CandidateEntity:
    return CandidateEntity(payload=payload, confidence=confidence, raw_text="raw")


class TestCategoryAssigner:
    """Tests for routing entities into categories."""

    def test_creates_target_category_on_first_use(self, store: MemoryStore):
        """The rule's bucket is created lazily with the rule's kind and themes."""
        assigner = CategoryAssigner(store)
        assignment = assigner.assign("u1", entity(PetPayload(name="Holly", species="cat")))

        category = store.get_category(assignment.category_id)
        assert category.name == "Pets and Animals"
        assert category.kind is CategoryKind.SUB
        assert category.themes == ["pets", "animals", "companions"]
        assert category.fact_count == 1
        assert assignment.confidence == 0.9
        assert assignment.rule_name == "pets"

    def test_bootstraps_general_category(self, store: MemoryStore):
        """The general category exists after any assignment."""
        CategoryAssigner(store).assign("u1", entity(NamePayload(name="Clemens")))
        assert store.get_general_category("u1") is not None

    def test_reuses_existing_category(self, store: MemoryStore):
        assigner = CategoryAssigner(store)
        first = assigner.assign("u1", entity(PetPayload(name="Holly", species="cat")))
        second = assigner.assign("u1", entity(PetPayload(name="Benny", species="cat")))

        assert first.category_id == second.category_id
        assert store.get_category(first.category_id).fact_count == 2

    def test_unmatched_fact_goes_to_general(self, store: MemoryStore):
        """Without a matching rule, facts land in the general category at 0.5."""
        assigner = CategoryAssigner(store, rules=())
        assignment = assigner.assign("u1", entity(PreferencePayload(sentiment="likes", value="hiking")))

        general = store.get_general_category("u1")
        assert assignment.category_id == general.id
        assert assignment.confidence == 0.5
        assert assignment.rule_name is None
        assert general.fact_count == 1

    def test_fact_keeps_provenance(self, store: MemoryStore):
        """The stored fact carries the entity's payload, confidence and text."""
        assignment = CategoryAssigner(store).assign("u1", entity(NamePayload(name="Clemens"), 0.95))
        stored = store.get_category(assignment.category_id).facts[0]
        assert stored.payload == NamePayload(name="Clemens")
        assert stored.confidence == 0.95
        assert stored.raw_text == "raw"
        assert stored == assignment.fact

    def test_every_category_holds_its_facts(self, store: MemoryStore):
        """Each fact lives in exactly one category of its owner."""
        assigner = CategoryAssigner(store)
        assigner.assign("u1", entity(NamePayload(name="Clemens")))
        assigner.assign("u1", entity(PetPayload(name="Holly", species="cat")))
        assigner.assign("u2", entity(PetPayload(name="Rex", species="dog")))

        u1_facts = [f for c in store.list_categories("u1") for f in c.facts]
        assert len(u1_facts) == 2
        assert all(c.fact_count == len(c.facts) for c in store.list_categories("u1"))
