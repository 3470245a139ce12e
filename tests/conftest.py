"""Shared fixtures for the memory tests."""

from pathlib import Path

import pytest

from mneme import MemoryStore
from mneme.errors import EmbeddingError

# Each word owns one dimension. "cat" is left out because every category
# text contains "Category:".
VOCABULARY = ("berlin", "pizza", "engineer", "peanut", "hiking", "home")


class KeywordEmbeddingProvider:
    """Deterministic embedding provider for tests.

    A text's vector has a 1.0 in the dimension of every vocabulary word it
    contains, so similarity is predictable from the words alone.
    """

    def __init__(self, vocabulary: tuple[str, ...] = VOCABULARY, fail: bool = False) -> None:
        self.vocabulary = vocabulary
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("provider unavailable")
        lowered = text.lower()
        return [1.0 if word in lowered else 0.0 for word in self.vocabulary]


@pytest.fixture
def store(tmp_path: Path) -> MemoryStore:
    """Create a MemoryStore with a temporary database."""
    store = MemoryStore(tmp_path / "test_memory.db")
    store.init_db()
    yield store
    store.close()


@pytest.fixture
def provider() -> KeywordEmbeddingProvider:
    """Create a working keyword embedding provider."""
    return KeywordEmbeddingProvider()


@pytest.fixture
def failing_provider() -> KeywordEmbeddingProvider:
    """Create a provider whose every call fails."""
    return KeywordEmbeddingProvider(fail=True)
