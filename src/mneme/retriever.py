"""Staged hybrid retrieval of category batches for a query."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from .config import MemoryConfig
from .errors import MnemeError
from .models import (
    Category,
    CategoryBatch,
    Fact,
    NamePayload,
    PetPayload,
    RetrievalStage,
    utcnow,
)
from .profile import ProfileManager, is_identity_query
from .rules import GENERAL_CONFIDENCE
from .store import MemoryStore

if TYPE_CHECKING:
    from .embeddings import CategoryIndexer, EmbeddingProvider

logger = logging.getLogger(__name__)

IDENTITY_CONFIDENCE = 1.0
KEYWORD_CONFIDENCE = 0.95
PROFILE_CATEGORY_NAME = "User Profile"

# Query vocabulary → fragments of the category name it routes to.
KEYWORD_ROUTES: tuple[tuple[frozenset[str], tuple[str, ...]], ...] = (
    (
        frozenset({
            "pet", "pets", "cat", "cats", "dog", "dogs", "animal", "animals",
            "kitten", "kittens", "puppy", "puppies",
        }),
        ("pet", "animal"),
    ),
)

STOPWORDS = frozenset({
    "a", "an", "the", "my", "me", "i", "is", "are", "do", "you", "what", "who",
    "about", "tell", "know", "of", "to", "and", "in", "on", "for", "your", "can",
})

WORD_RE = re.compile(r"[a-z0-9']+")


def query_words(query: str) -> list[str]:
    """Lowercased content words of a query."""
    return [w for w in WORD_RE.findall(query.lower()) if w not in STOPWORDS and len(w) > 1]


def summarize_category(category: Category) -> str:
    """Quick textual summary of a category's facts, without an LLM.

    Pets are listed by name and species; other families are counted.
    """
    if not category.facts:
        return f"{category.name} category"

    parts = []
    for fact_type in dict.fromkeys(f.type for f in category.facts):
        of_type = [f for f in category.facts if f.type is fact_type]
        if isinstance(of_type[0].payload, PetPayload):
            pets = ", ".join(f"{f.payload.name} ({f.payload.species})" for f in of_type)
            parts.append(f"Pets: {pets}")
        else:
            parts.append(f"{fact_type.value}: {len(of_type)} facts")

    return "; ".join(parts)


class HybridRetriever:
    """Staged lookup: identity → keyword → embedding similarity → fallback.

    The first stage that yields batches short-circuits the rest. Identity
    and keyword stages never consult embeddings, which keeps the facts
    that matter most independent of similarity scores.
    """

    def __init__(
        self,
        store: MemoryStore,
        provider: EmbeddingProvider | None,
        profiles: ProfileManager | None = None,
        config: MemoryConfig | None = None,
        indexer: CategoryIndexer | None = None,
    ) -> None:
        """Initialize the retriever.

        Args:
            store: The MemoryStore with categories and embeddings.
            provider: Embeds the query; None disables the embedding stage.
            profiles: Profile manager for the identity stage.
            config: Thresholds; defaults to MemoryConfig().
            indexer: When set, stale embeddings are refreshed before the
                similarity search.
        """
        self.store = store
        self.provider = provider
        self.profiles = profiles or ProfileManager(store)
        self.config = config or MemoryConfig()
        self.indexer = indexer

    async def retrieve(self, user_id: str, query: str, limit: int | None = None) -> list[CategoryBatch]:
        """Retrieve ranked category batches for a query.

        Args:
            user_id: Owner of the memory.
            query: Free-text query, usually the current utterance.
            limit: Maximum batches; defaults to config.retrieval_limit.

        Returns:
            Batches from the first stage that produced any, or an empty list.
        """
        limit = limit or self.config.retrieval_limit

        batches = self._identity_stage(user_id, query)
        if not batches:
            batches = self._keyword_stage(user_id, query)
        if not batches:
            batches = await self._embedding_stage(user_id, query, limit)
        if not batches:
            batches = self._fallback_stage(user_id)

        if batches:
            logger.debug("Retrieved %d batches via %s stage", len(batches), batches[0].stage.value)
        return batches[:limit]

    def _identity_stage(self, user_id: str, query: str) -> list[CategoryBatch]:
        if not is_identity_query(query):
            return []
        name = self.profiles.lookup_name(user_id)
        if not name:
            return []
        fact = Fact(
            payload=NamePayload(name=name),
            confidence=IDENTITY_CONFIDENCE,
            raw_text=f"My name is {name}",
            recorded_at=utcnow(),
        )
        return [
            CategoryBatch(
                category_id=None,
                category_name=PROFILE_CATEGORY_NAME,
                facts=[fact],
                summary=f"The user's name is {name}",
                confidence=IDENTITY_CONFIDENCE,
                stage=RetrievalStage.IDENTITY,
            )
        ]

    def _keyword_stage(self, user_id: str, query: str) -> list[CategoryBatch]:
        words = set(WORD_RE.findall(query.lower()))
        for vocabulary, fragments in KEYWORD_ROUTES:
            if not words & vocabulary:
                continue
            for category in self.store.find_categories_matching(user_id, fragments):
                if category.facts:
                    return [self._batch(category, KEYWORD_CONFIDENCE, RetrievalStage.KEYWORD)]
        return []

    async def _embedding_stage(self, user_id: str, query: str, limit: int) -> list[CategoryBatch]:
        if self.provider is None:
            return []

        try:
            if self.indexer is not None:
                await self.indexer.refresh(user_id)
            vector = await self.provider.embed(query)
            matches = self.store.search_embeddings(
                user_id,
                vector,
                k=limit * 3,
                min_similarity=self.config.similarity_threshold,
            )
        except MnemeError as e:
            logger.warning(f"Embedding stage failed, falling back: {e}")
            return []
        except Exception as e:
            logger.warning(f"Embedding provider error, falling back: {e}")
            return []

        words = query_words(query)

        def overlap(content: str) -> int:
            lowered = content.lower()
            return sum(1 for w in words if w in lowered)

        ranked = sorted(matches, key=lambda m: (overlap(m[0].content), m[1]), reverse=True)

        batches = []
        for embedding, similarity in ranked:
            try:
                category = self.store.get_category(embedding.category_id)
            except MnemeError as e:
                logger.warning(f"Skipping category {embedding.category_id}: {e}")
                continue
            if category.facts:
                batches.append(self._batch(category, similarity, RetrievalStage.EMBEDDING))
            if len(batches) >= limit:
                break
        return batches

    def _fallback_stage(self, user_id: str) -> list[CategoryBatch]:
        general = self.store.get_general_category(user_id)
        if general is None or not general.facts:
            return []
        batch = self._batch(general, GENERAL_CONFIDENCE, RetrievalStage.FALLBACK)
        batch.summary = "General knowledge about the user"
        return [batch]

    def _batch(self, category: Category, confidence: float, stage: RetrievalStage) -> CategoryBatch:
        return CategoryBatch(
            category_id=category.id,
            category_name=category.name,
            facts=list(category.facts),
            summary=summarize_category(category),
            confidence=confidence,
            stage=stage,
        )
