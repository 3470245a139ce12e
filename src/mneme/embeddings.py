"""Category embedding generation and lazy refresh."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx

from .config import MemoryConfig
from .errors import EmbeddingError, MnemeError
from .models import Category, CategoryEmbedding, utcnow
from .store import MemoryStore

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Anything that turns text into a fixed-length vector."""

    async def embed(self, text: str) -> list[float]: ...


class OpenAIEmbeddingClient:
    """EmbeddingProvider backed by an OpenAI-compatible /embeddings endpoint.

    Example:
        client = OpenAIEmbeddingClient(api_key="...")
        vector = await client.embed("Category: Pets and Animals")
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        base_url: str = "https://api.openai.com/v1",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: API key. Falls back to OPENAI_API_KEY.
            model: Embedding model name.
            dimensions: Requested vector length.
            base_url: API base URL.
            http_client: Optional preconfigured httpx client (tests pass
                one built on httpx.MockTransport).
        """
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.model = model
        self.dimensions = dimensions
        self.base_url = base_url.rstrip("/")
        self._client = http_client

    @classmethod
    def from_config(cls, config: MemoryConfig, api_key: str | None = None) -> OpenAIEmbeddingClient:
        return cls(
            api_key=api_key,
            model=config.embedding_model,
            dimensions=config.embedding_dimensions,
            base_url=config.embedding_base_url,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def embed(self, text: str) -> list[float]:
        """Embed one text.

        Raises:
            EmbeddingError: On missing credentials, HTTP failure or a
                malformed response.
        """
        if not self.api_key:
            raise EmbeddingError("OPENAI_API_KEY is not configured")
        if not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        try:
            response = await self._get_client().post(
                f"{self.base_url}/embeddings",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"model": self.model, "input": text, "dimensions": self.dimensions},
            )
            response.raise_for_status()
            data: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as e:
            raise EmbeddingError(f"Embedding request failed with status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e
        except ValueError as e:
            raise EmbeddingError(f"Invalid embedding response: {e}") from e

        try:
            vector = [float(x) for x in data["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise EmbeddingError(f"Unexpected embedding payload: {e}") from e

        if len(vector) != self.dimensions:
            raise EmbeddingError(f"Expected {self.dimensions} dimensions, got {len(vector)}")
        return vector

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_category_content(category: Category) -> str:
    """Synthesize the text embedded for a category.

    Deterministic: metadata lines followed by one line per fact.
    """
    lines = [f"Category: {category.name}", f"Type: {category.kind.value}"]
    if category.themes:
        lines.append(f"Themes: {', '.join(category.themes)}")
    lines.append("Facts:")
    lines.extend(f"- {fact.describe()}" for fact in category.facts)
    return "\n".join(lines) + "\n"


@dataclass
class IndexReport:
    """Outcome of one refresh pass, as category ids."""

    refreshed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class CategoryIndexer:
    """Keeps one embedding per non-empty category, regenerated lazily.

    An embedding younger than the freshness window is reused even if
    facts were appended since it was computed.
    """

    def __init__(
        self,
        store: MemoryStore,
        provider: EmbeddingProvider,
        config: MemoryConfig | None = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.config = config or MemoryConfig()

    async def refresh(self, user_id: str, now: datetime | None = None) -> IndexReport:
        """Ensure every non-empty category of a user has a fresh embedding.

        Provider or store failures are logged per category and do not stop
        the pass.

        Args:
            user_id: Owner of the categories.
            now: Reference time for freshness (defaults to the current time).

        Returns:
            IndexReport listing refreshed, skipped and failed category ids.
        """
        report = IndexReport()
        now = now or utcnow()

        for category in self.store.list_categories(user_id, min_facts=1):
            existing = self.store.get_embedding(category.id)
            if existing and existing.is_fresh(self.config.freshness_window, now):
                report.skipped.append(category.id)
                continue

            try:
                await self.refresh_category(category, now)
            except MnemeError as e:
                logger.warning(f"Skipping embedding refresh for category {category.id}: {e}")
                report.failed.append(category.id)
                continue
            report.refreshed.append(category.id)

        return report

    async def refresh_category(self, category: Category, now: datetime | None = None) -> CategoryEmbedding:
        """Regenerate and store the embedding of one category unconditionally.

        Raises:
            EmbeddingError: If the provider fails.
            StoreError: If the embedding cannot be stored.
        """
        content = build_category_content(category)
        try:
            vector = await self.provider.embed(content)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding provider failed: {e}") from e

        embedding = CategoryEmbedding(
            category_id=category.id,
            vector=vector,
            content=content,
            created_at=now or utcnow(),
        )
        self.store.upsert_embedding(embedding)
        return embedding
