"""Memory manager for orchestrating extraction, storage and retrieval."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Sequence

from .assignment import Assignment, CategoryAssigner
from .config import MemoryConfig
from .context import ContextAssembler
from .embeddings import CategoryIndexer, IndexReport
from .errors import MnemeError
from .evolution import EvolutionEvaluator, EvolutionReport
from .extractor import EntityExtractor
from .logging import EventLog, configure_event_log
from .models import CategoryBatch, ConversationSummary, Turn, UserProfile
from .profile import ProfileManager
from .retriever import HybridRetriever
from .rules import DEFAULT_RULES, CategoryRule
from .store import MemoryStore

if TYPE_CHECKING:
    from .embeddings import EmbeddingProvider
    from .summarizer import ConversationSummarizer

logger = logging.getLogger(__name__)


class MemoryManager:
    """Orchestrates memory operations for a conversation pipeline.

    This is the main interface for the memory system. A message turn calls
    process_message() to remember what the user said and build_context()
    to get the text block prepended to the LLM prompt. Neither raises:
    memory failures degrade the turn, they never abort it.

    Writes for one user are funneled through a per-user asyncio.Lock, so a
    turn's category and profile updates are applied as one unit. The
    store calls are synchronous today; the lock is what keeps turns from
    interleaving once any step in the critical section awaits.
    Writers in other processes sharing the database are only protected by
    the store's transactions (last writer wins per category).
    """

    def __init__(
        self,
        store: MemoryStore,
        provider: EmbeddingProvider | None = None,
        config: MemoryConfig | None = None,
        summarizer: ConversationSummarizer | None = None,
        event_log: EventLog | None = None,
        extractor: EntityExtractor | None = None,
        rules: Sequence[CategoryRule] = DEFAULT_RULES,
    ) -> None:
        """Initialize the manager and its engines.

        Args:
            store: The MemoryStore for persistence.
            provider: Embedding provider; None disables the similarity stage.
            config: Thresholds; defaults to MemoryConfig().
            summarizer: Optional ConversationSummarizer for summaries.
            event_log: Structured event log. When None and config.log_dir is
                set, the global event log is configured in that directory.
            extractor: Entity extractor; defaults to the pattern extractor.
            rules: Category routing rules in priority order.
        """
        self.store = store
        self.provider = provider
        self.config = config or MemoryConfig()
        self.summarizer = summarizer
        if event_log is None and self.config.log_dir is not None:
            event_log = configure_event_log(self.config.log_dir)
        self.event_log = event_log

        self.extractor = extractor or EntityExtractor()
        self.assigner = CategoryAssigner(store, rules)
        self.profiles = ProfileManager(store)
        self.indexer = CategoryIndexer(store, provider, self.config) if provider else None
        self.retriever = HybridRetriever(
            store,
            provider,
            profiles=self.profiles,
            config=self.config,
            indexer=self.indexer,
        )
        self.assembler = ContextAssembler(self.config)
        self.evaluator = EvolutionEvaluator(self.config)

        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        return self._locks.setdefault(user_id, asyncio.Lock())

    def _record(self, method: str, *args, **kwargs) -> None:
        """Write to the event log; a failing log never breaks a turn."""
        if self.event_log is None:
            return
        try:
            getattr(self.event_log, method)(*args, **kwargs)
        except OSError as e:
            logger.warning(f"Failed to write event log: {e}")

    def initialize_user(self, user_id: str) -> None:
        """Bootstrap a user's memory. Idempotent.

        Raises:
            StoreError: If the general category cannot be created.
        """
        self.store.ensure_general_category(user_id)

    async def process_message(
        self,
        user_id: str,
        text: str,
        role: str = "user",
        conversation_id: str | None = None,
    ) -> list[Assignment]:
        """Remember the facts stated in one message.

        Only user messages are mined. If the store fails mid-turn, the
        remaining entities of the turn are abandoned.

        Args:
            user_id: Owner of the memory.
            text: The message content.
            role: Message role; anything other than "user" is ignored.
            conversation_id: Conversation the message belongs to.

        Returns:
            Assignments for the facts stored from this message.
        """
        if role != "user" or not text.strip():
            return []

        entities = self.extractor.extract(text)
        self._record(
            "log_extraction",
            user_id,
            len(entities),
            conversation_id=conversation_id,
            types=[e.type.value for e in entities],
        )
        if not entities:
            return []

        assignments: list[Assignment] = []
        async with self._lock_for(user_id):
            try:
                for entity in entities:
                    assignment = self.assigner.assign(user_id, entity)
                    assignments.append(assignment)
                    self._record(
                        "log_assignment",
                        user_id,
                        assignment.category_id,
                        category_name=assignment.category_name,
                        confidence=assignment.confidence,
                        fact_type=assignment.fact.type.value,
                    )
                self.profiles.record_entities(user_id, entities)
            except MnemeError as e:
                logger.error(f"Memory update failed for user {user_id}: {e}")
                self._record("log_error", str(e), user_id=user_id, context="process_message")

        return assignments

    async def retrieve(self, user_id: str, query: str, limit: int | None = None) -> list[CategoryBatch]:
        """Retrieve category batches for a query.

        Raises:
            MnemeError: If the store fails outside the embedding stage.
        """
        started = time.perf_counter()
        batches = await self.retriever.retrieve(user_id, query, limit)
        self._record(
            "log_retrieval",
            user_id,
            batches[0].stage.value if batches else None,
            len(batches),
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return batches

    async def build_context(
        self,
        user_id: str,
        query: str,
        recent_turns: Sequence[Turn] = (),
        conversation_id: str | None = None,
    ) -> str:
        """Build the memory context block for the next LLM call.

        Args:
            user_id: Owner of the memory.
            query: The current utterance.
            recent_turns: Raw conversation turns, oldest first.
            conversation_id: Used to look up a stored summary.

        Returns:
            The context text, or "" when there is nothing to add.
        """
        batches: list[CategoryBatch] = []
        summary: ConversationSummary | None = None
        profile: UserProfile | None = None

        try:
            batches = await self.retrieve(user_id, query)
        except MnemeError as e:
            logger.warning(f"Retrieval failed for user {user_id}: {e}")
            self._record("log_error", str(e), user_id=user_id, context="retrieve")

        try:
            if conversation_id:
                summary = self.store.get_conversation_summary(conversation_id)
            profile = self.store.get_profile(user_id)
        except MnemeError as e:
            logger.warning(f"Failed to load summary or profile for user {user_id}: {e}")
            self._record("log_error", str(e), user_id=user_id, context="build_context")

        context = self.assembler.assemble(
            batches,
            recent_turns=recent_turns,
            summary=summary,
            profile=profile,
        )
        return context.to_prompt()

    async def refresh_embeddings(self, user_id: str) -> IndexReport:
        """Regenerate stale category embeddings of a user.

        Returns:
            The IndexReport; empty when no embedding provider is configured.
        """
        if self.indexer is None:
            return IndexReport()

        started = time.perf_counter()
        report = await self.indexer.refresh(user_id)
        self._record(
            "log_embedding_refresh",
            user_id,
            refreshed=len(report.refreshed),
            skipped=len(report.skipped),
            failed=len(report.failed),
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return report

    def evaluate_evolution(self, user_id: str) -> EvolutionReport:
        """Report split and merge candidates among a user's categories."""
        report = self.evaluator.evaluate(self.store.list_categories(user_id))
        if report.needs_attention:
            logger.info(
                "User %s has %d split and %d merge candidates",
                user_id,
                len(report.split_candidates),
                len(report.merge_candidates),
            )
        return report

    async def summarize_conversation(
        self, conversation_id: str, turns: Sequence[Turn]
    ) -> ConversationSummary | None:
        """Summarize a conversation and store the result.

        Returns:
            The stored summary, or None if no summarizer is configured or
            nothing could be summarized.
        """
        if self.summarizer is None:
            return None

        summary = await self.summarizer.summarize(conversation_id, turns)
        if summary is None:
            return None

        try:
            self.store.save_conversation_summary(summary)
        except MnemeError as e:
            logger.warning(f"Failed to store summary for {conversation_id}: {e}")
            self._record("log_error", str(e), context="summarize_conversation")
            return None
        return summary
