"""Categorized long-term memory for conversational assistants."""

from .assignment import Assignment, CategoryAssigner
from .config import MemoryConfig, load_config, save_config
from .context import AssembledContext, ContextAssembler
from .embeddings import CategoryIndexer, EmbeddingProvider, OpenAIEmbeddingClient
from .errors import CategoryNotFoundError, ConfigError, EmbeddingError, MnemeError, StoreError
from .evolution import EvolutionEvaluator, EvolutionReport
from .extractor import EntityExtractor
from .logging import EventLog, configure_event_log, get_event_log
from .manager import MemoryManager
from .models import (
    CandidateEntity,
    Category,
    CategoryBatch,
    CategoryKind,
    EntityType,
    Fact,
    Turn,
    UserProfile,
)
from .profile import ProfileManager
from .retriever import HybridRetriever
from .rules import DEFAULT_RULES, CategoryRule
from .store import MemoryStore
from .summarizer import ConversationSummarizer

__all__ = [
    "AssembledContext",
    "Assignment",
    "CandidateEntity",
    "Category",
    "CategoryAssigner",
    "CategoryBatch",
    "CategoryIndexer",
    "CategoryKind",
    "CategoryNotFoundError",
    "CategoryRule",
    "ConfigError",
    "ContextAssembler",
    "ConversationSummarizer",
    "DEFAULT_RULES",
    "EmbeddingError",
    "EmbeddingProvider",
    "EntityExtractor",
    "EntityType",
    "EventLog",
    "EvolutionEvaluator",
    "EvolutionReport",
    "Fact",
    "HybridRetriever",
    "MemoryConfig",
    "MemoryManager",
    "MemoryStore",
    "MnemeError",
    "OpenAIEmbeddingClient",
    "ProfileManager",
    "StoreError",
    "Turn",
    "UserProfile",
    "configure_event_log",
    "get_event_log",
    "load_config",
    "save_config",
]
