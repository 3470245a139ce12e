"""Assembly of retrieved memory into one LLM-ready context block."""

import re
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .config import MemoryConfig
from .models import (
    CategoryBatch,
    ConversationSummary,
    Fact,
    NamePayload,
    PetPayload,
    Turn,
    UserProfile,
)

INFORMATIVE_MARKERS = (
    "my name is",
    "i am",
    "i'm",
    "call me",
    "you can call me",
    "i work",
    "i live",
    "i like",
    "i love",
    "i have",
    "yes",
    "no",
)

QUESTION_MARKERS = (
    "do you",
    "can you",
    "what is",
    "what's",
    "who is",
    "where is",
    "when is",
    "how is",
)

SIMILAR_LENGTH_DELTA = 10
SIMILAR_WORD_OVERLAP = 0.8

_WORD = re.compile(r"[\w']+")


def _contains_phrase(text: str, phrase: str) -> bool:
    return re.search(rf"(?<![\w']){re.escape(phrase)}(?![\w'])", text) is not None


def normalize_snippet(text: str) -> str:
    """Lowercase and drop punctuation so trivially different copies compare equal."""
    return " ".join(_WORD.findall(text.lower()))


def are_similar(first: str, second: str) -> bool:
    """Check whether two snippets are near-duplicates.

    Two snippets are duplicates if they are equal after normalization, or
    their lengths differ by fewer than 10 characters and more than 80% of
    the words overlap.
    """
    a, b = normalize_snippet(first), normalize_snippet(second)
    if a == b:
        return True
    if abs(len(a) - len(b)) >= SIMILAR_LENGTH_DELTA:
        return False
    words_a, words_b = a.split(), b.split()
    if not words_a or not words_b:
        return False
    common = sum(1 for w in words_a if w in words_b)
    return common / max(len(words_a), len(words_b)) > SIMILAR_WORD_OVERLAP


def is_informative(text: str) -> bool:
    """True for statements that carry information rather than ask for it."""
    lowered = text.lower()
    if "?" in lowered or any(_contains_phrase(lowered, q) for q in QUESTION_MARKERS):
        return False
    return any(_contains_phrase(lowered, marker) for marker in INFORMATIVE_MARKERS)


@dataclass
class Snippet:
    """A piece of remembered text with its relevance score."""

    content: str
    score: float
    informative: bool = False

    @classmethod
    def of(cls, content: str, score: float) -> "Snippet":
        return cls(content=content, score=score, informative=is_informative(content))


def dedupe_snippets(snippets: Iterable[Snippet], limit: int | None = None) -> list[Snippet]:
    """Drop near-duplicate snippets, then order informative ones first.

    Snippets are considered by descending score. When a duplicate is
    informative and the kept copy is not, the informative one replaces it.
    """
    kept: list[Snippet] = []
    for snippet in sorted(snippets, key=lambda s: s.score, reverse=True):
        for i, existing in enumerate(kept):
            if are_similar(snippet.content, existing.content):
                if snippet.informative and not existing.informative:
                    kept[i] = snippet
                break
        else:
            kept.append(snippet)

    kept.sort(key=lambda s: (not s.informative, -s.score))
    return kept[:limit] if limit is not None else kept


def current_and_previous(facts: Sequence[Fact]) -> list[tuple[Fact, list[Fact]]]:
    """Resolve single-valued facts by recency.

    Full history is kept in storage. For facts sharing a slot (a name, a
    residence, a birthday) the most recent is current and older values are
    returned as previous ones. Facts without a slot are all current.
    """
    by_slot: dict[str, list[Fact]] = {}
    order: list[str | Fact] = []
    for fact in facts:
        slot = fact.payload.slot()
        if slot is None:
            order.append(fact)
            continue
        if slot not in by_slot:
            by_slot[slot] = []
            order.append(slot)
        by_slot[slot].append(fact)

    resolved: list[tuple[Fact, list[Fact]]] = []
    for item in order:
        if isinstance(item, Fact):
            resolved.append((item, []))
            continue
        history = sorted(by_slot[item], key=lambda f: f.recorded_at)
        current = history[-1]
        previous = [f for f in reversed(history[:-1]) if f.describe() != current.describe()]
        resolved.append((current, previous))
    return resolved


@dataclass
class AssembledContext:
    """Sections of the context block; empty sections are omitted."""

    annotations: list[str] = field(default_factory=list)
    summary: str | None = None
    topics: list[str] = field(default_factory=list)
    known_facts: list[str] = field(default_factory=list)
    snippets: list[Snippet] = field(default_factory=list)
    recent_turns: list[Turn] = field(default_factory=list)
    preferences: dict[str, list[str]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (
            self.annotations
            or self.summary
            or self.topics
            or self.known_facts
            or self.snippets
            or self.recent_turns
            or self.preferences
        )

    def to_prompt(self) -> str:
        """Render the block prepended to the LLM prompt ("" when empty)."""
        if self.is_empty:
            return ""

        parts = ["=== IMPORTANT CONTEXT FROM PREVIOUS CONVERSATIONS ==="]
        parts.extend(self.annotations)

        if self.summary:
            parts.append(f"\nConversation summary: {self.summary}")
        if self.topics:
            parts.append(f"Main topics discussed: {', '.join(self.topics)}")

        if self.known_facts:
            parts.append("\n=== WHAT YOU KNOW ABOUT THE USER ===")
            parts.extend(self.known_facts)

        if self.snippets:
            parts.append("\n=== RELEVANT STATEMENTS FROM PAST CONVERSATIONS ===")
            for snippet in self.snippets:
                parts.append(f'- "{snippet.content}" ({snippet.score * 100:.0f}% relevant)')

        if self.recent_turns:
            parts.append("\n=== RECENT CONVERSATION ===")
            parts.extend(f"{turn.role}: {turn.content}" for turn in self.recent_turns)

        if self.preferences:
            prefs = "; ".join(f"{k}: {', '.join(v)}" for k, v in self.preferences.items() if v)
            if prefs:
                parts.append(f"\nUser preferences: {prefs}")

        parts.append("\nREMEMBER: Use the above information when responding to the user.")
        return "\n".join(parts)


class ContextAssembler:
    """Merges retrieval output, recent turns, summaries and the profile."""

    def __init__(self, config: MemoryConfig | None = None) -> None:
        self.config = config or MemoryConfig()

    def assemble(
        self,
        batches: Sequence[CategoryBatch],
        recent_turns: Sequence[Turn] = (),
        summary: ConversationSummary | None = None,
        profile: UserProfile | None = None,
        extra_snippets: Iterable[Snippet] = (),
    ) -> AssembledContext:
        """Build the context sections.

        Args:
            batches: Retriever output for the current utterance.
            recent_turns: Raw turns, oldest first; only the last
                config.recent_turn_count are kept.
            summary: Stored summary and topics of the conversation.
            profile: The user's profile, for name and preferences.
            extra_snippets: Additional remembered statements supplied by
                the caller (for example a message history search).

        Returns:
            The AssembledContext.
        """
        context = AssembledContext()

        all_facts = [fact for batch in batches for fact in batch.facts]
        context.annotations = self._annotations(all_facts, profile)

        if summary is not None:
            context.summary = summary.summary or None
            context.topics = list(summary.topics)

        for batch in batches:
            lines = self._fact_lines(batch.facts)
            if lines:
                context.known_facts.append(f"[{batch.category_name}] {batch.summary}")
                context.known_facts.extend(lines)

        snippets = [
            Snippet.of(fact.raw_text, batch.confidence)
            for batch in batches
            for fact in batch.facts
            if fact.raw_text
        ]
        snippets.extend(extra_snippets)
        context.snippets = dedupe_snippets(snippets, limit=self.config.relevant_snippet_count)

        if self.config.recent_turn_count:
            context.recent_turns = list(recent_turns)[-self.config.recent_turn_count:]

        if profile is not None:
            context.preferences = {k: list(v) for k, v in profile.preferences.items() if v}

        return context

    def _annotations(self, facts: Sequence[Fact], profile: UserProfile | None) -> list[str]:
        """Explicit statements of key facts; the LLM should not have to infer them."""
        annotations = []

        names = [f for f in facts if isinstance(f.payload, NamePayload)]
        name = profile.name if profile and profile.name else None
        if name is None and names:
            name = max(names, key=lambda f: f.recorded_at).payload.name
        if name:
            annotations.append(f"IMPORTANT: the user's name is {name}.")

        pets = [f.payload for f in facts if isinstance(f.payload, PetPayload)]
        if pets:
            listed = ", ".join(dict.fromkeys(f"{p.name} ({p.species})" for p in pets))
            annotations.append(f"IMPORTANT: the user's pets are {listed}.")

        return annotations

    def _fact_lines(self, facts: Sequence[Fact]) -> list[str]:
        lines = []
        for current, previous in current_and_previous(facts):
            line = f"- {current.describe()}"
            if previous:
                earlier = ", ".join(p.describe().split(": ", 1)[-1] for p in previous)
                line += f" (previously: {earlier})"
            lines.append(line)
        return list(dict.fromkeys(lines))
