"""Tests for context assembly."""

from datetime import timedelta

import pytest

from mneme.config import MemoryConfig
from mneme.context import (
    ContextAssembler,
    Snippet,
    are_similar,
    current_and_previous,
    dedupe_snippets,
    is_informative,
)
from mneme.models import (
    CategoryBatch,
    ConversationSummary,
    Fact,
    LocationPayload,
    NamePayload,
    PetPayload,
    RetrievalStage,
    Turn,
    UserProfile,
    utcnow,
)


def make_fact(payload, raw_text: str = "", age_minutes: int = 0) -> Fact:
    return Fact(
        payload=payload,
        confidence=0.9,
        raw_text=raw_text,
        recorded_at=utcnow() - timedelta(minutes=age_minutes),
    )


def make_batch(name: str, facts: list[Fact], summary: str = "summary", confidence: float = 0.9) -> CategoryBatch:
    return CategoryBatch(
        category_id=name,
        category_name=name,
        facts=facts,
        summary=summary,
        confidence=confidence,
        stage=RetrievalStage.KEYWORD,
    )


@pytest.fixture
def assembler() -> ContextAssembler:
    return ContextAssembler(MemoryConfig())


class TestSimilarity:
    """Tests for snippet similarity and informativeness."""

    def test_case_and_punctuation_are_ignored(self):
        assert are_similar("My name is Clemens", "my name is clemens.")

    def test_high_overlap_is_similar(self):
        assert are_similar("Holly and Benny are my cats", "yes Holly and Benny are my cats")

    def test_different_statements(self):
        assert not are_similar("I live in Berlin", "I work as a software engineer")

    def test_large_length_difference(self):
        assert not are_similar("I like tea", "I like tea and also long walks by the river")

    def test_informative_statements(self):
        assert is_informative("My name is Clemens")
        assert is_informative("I have two cats")

    def test_questions_are_not_informative(self):
        assert not is_informative("Do you know my name")
        assert not is_informative("my name is what?")

    def test_marker_needs_word_boundary(self):
        """'no' inside 'know' is not a marker."""
        assert not is_informative("Holly and Benny know the garden")


class TestDedupe:
    """Tests for snippet deduplication."""

    def test_duplicates_collapse(self):
        snippets = [Snippet.of("My name is Clemens", 0.9), Snippet.of("my name is clemens.", 0.8)]
        result = dedupe_snippets(snippets)
        assert [s.content for s in result] == ["My name is Clemens"]

    def test_informative_copy_replaces_plain_one(self):
        snippets = [
            Snippet.of("Holly and Benny are my cats", 0.9),
            Snippet.of("yes Holly and Benny are my cats", 0.6),
        ]
        result = dedupe_snippets(snippets)
        assert [s.content for s in result] == ["yes Holly and Benny are my cats"]

    def test_informative_first(self):
        snippets = [Snippet.of("Tell me about Berlin?", 0.99), Snippet.of("I live in Berlin", 0.5)]
        result = dedupe_snippets(snippets)
        assert [s.content for s in result] == ["I live in Berlin", "Tell me about Berlin?"]

    def test_limit(self):
        snippets = [Snippet.of(f"I like {w}", 0.5) for w in ("tea", "coffee", "chess", "hiking", "jazz")]
        assert len(dedupe_snippets(snippets, limit=3)) == 3


class TestRecency:
    """Tests for resolving conflicting single-valued facts."""

    def test_most_recent_is_current(self):
        old = make_fact(LocationPayload(kind="residence", place="Vienna"), age_minutes=60)
        new = make_fact(LocationPayload(kind="residence", place="Berlin"))
        resolved = current_and_previous([new, old])
        assert resolved == [(new, [old])]

    def test_multi_valued_facts_are_all_current(self):
        holly = make_fact(PetPayload(name="Holly", species="cat"))
        benny = make_fact(PetPayload(name="Benny", species="cat"))
        assert current_and_previous([holly, benny]) == [(holly, []), (benny, [])]

    def test_repeated_value_is_not_a_previous_value(self):
        first = make_fact(NamePayload(name="Clemens"), age_minutes=10)
        second = make_fact(NamePayload(name="Clemens"))
        assert current_and_previous([first, second]) == [(second, [])]


class TestContextAssembler:
    """Tests for the assembled prompt block."""

    def test_empty_context_renders_nothing(self, assembler: ContextAssembler):
        assert assembler.assemble([]).to_prompt() == ""

    def test_name_annotation_from_facts(self, assembler: ContextAssembler):
        batch = make_batch("User Profile", [make_fact(NamePayload(name="Clemens"), "My name is Clemens")])
        prompt = assembler.assemble([batch]).to_prompt()
        assert "IMPORTANT: the user's name is Clemens." in prompt
        assert prompt.startswith("=== IMPORTANT CONTEXT FROM PREVIOUS CONVERSATIONS ===")
        assert prompt.rstrip().endswith("REMEMBER: Use the above information when responding to the user.")

    def test_profile_name_takes_precedence(self, assembler: ContextAssembler):
        batch = make_batch("Identity", [make_fact(NamePayload(name="Clem"))])
        context = assembler.assemble([batch], profile=UserProfile(user_id="u1", name="Clemens"))
        assert context.annotations[0] == "IMPORTANT: the user's name is Clemens."

    def test_pet_annotation(self, assembler: ContextAssembler):
        batch = make_batch(
            "Pets and Animals",
            [
                make_fact(PetPayload(name="Holly", species="cat")),
                make_fact(PetPayload(name="Benny", species="cat")),
            ],
        )
        context = assembler.assemble([batch])
        assert "IMPORTANT: the user's pets are Holly (cat), Benny (cat)." in context.annotations

    def test_known_facts_note_previous_values(self, assembler: ContextAssembler):
        batch = make_batch(
            "Living Environment",
            [
                make_fact(LocationPayload(kind="residence", place="Vienna"), age_minutes=60),
                make_fact(LocationPayload(kind="residence", place="Berlin")),
            ],
            summary="location: 2 facts",
        )
        context = assembler.assemble([batch])
        assert context.known_facts == [
            "[Living Environment] location: 2 facts",
            "- Lives in: Berlin (previously: Vienna)",
        ]

    def test_sections_render_in_order(self, assembler: ContextAssembler):
        batch = make_batch("Pets and Animals", [make_fact(PetPayload(name="Holly", species="cat"), "I have a cat named Holly")])
        context = assembler.assemble(
            [batch],
            recent_turns=[Turn("user", "hi"), Turn("assistant", "hello")],
            summary=ConversationSummary(conversation_id="c1", summary="Talked about cats", topics=["pets"]),
            profile=UserProfile(user_id="u1", preferences={"likes": ["hiking"]}),
        )
        prompt = context.to_prompt()

        headers = [
            "=== IMPORTANT CONTEXT FROM PREVIOUS CONVERSATIONS ===",
            "Conversation summary: Talked about cats",
            "Main topics discussed: pets",
            "=== WHAT YOU KNOW ABOUT THE USER ===",
            "=== RELEVANT STATEMENTS FROM PAST CONVERSATIONS ===",
            "=== RECENT CONVERSATION ===",
            "User preferences: likes: hiking",
        ]
        positions = [prompt.index(h) for h in headers]
        assert positions == sorted(positions)
        assert '- "I have a cat named Holly" (90% relevant)' in prompt
        assert "user: hi\nassistant: hello" in prompt

    def test_recent_turns_are_capped(self):
        assembler = ContextAssembler(MemoryConfig(recent_turn_count=2))
        turns = [Turn("user", f"message {i}") for i in range(5)]
        context = assembler.assemble([], recent_turns=turns)
        assert [t.content for t in context.recent_turns] == ["message 3", "message 4"]

    def test_duplicate_snippets_collapse(self, assembler: ContextAssembler):
        facts = [
            make_fact(NamePayload(name="Clemens"), "My name is Clemens", age_minutes=5),
            make_fact(NamePayload(name="Clemens"), "my name is clemens."),
        ]
        context = assembler.assemble([make_batch("Identity", facts)])
        assert len(context.snippets) == 1
