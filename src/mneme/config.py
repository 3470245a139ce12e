"""Memory configuration loader.

Loads tunables from ~/.mneme/config.json, lets environment variables
override the deployment-specific ones, and hands a single MemoryConfig
to every engine that needs thresholds.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".mneme" / "config.json"
DEFAULT_DB_PATH = Path.home() / ".mneme" / "memory.db"

ENV_OVERRIDES = {
    "MNEME_DB_PATH": "db_path",
    "MNEME_EMBEDDING_MODEL": "embedding_model",
    "MNEME_EMBEDDING_BASE_URL": "embedding_base_url",
    "MNEME_SUMMARY_MODEL": "summary_model",
}


@dataclass
class MemoryConfig:
    """Tunables for categorization, indexing and retrieval.

    Attributes:
        split_threshold: Fact count at which a category becomes a split candidate.
        merge_threshold: Categories below this fact count are merge candidates.
        freshness_window: Age under which an embedding is reused without regeneration.
        similarity_threshold: Minimum cosine similarity for the embedding stage.
        retrieval_limit: Default number of category batches returned.
        recent_turn_count: Raw conversation turns included in the context.
        relevant_snippet_count: Maximum snippets kept after deduplication.
        embedding_model: Model name sent to the embedding endpoint.
        embedding_dimensions: Expected vector length.
        embedding_base_url: Base URL of an OpenAI-compatible embedding API.
        summary_model: Groq model used for conversation summaries.
        db_path: SQLite database location.
        log_dir: Directory for the JSONL event log (None disables it).
    """

    split_threshold: int = 20
    merge_threshold: int = 3
    freshness_window: timedelta = field(default_factory=lambda: timedelta(hours=1))
    similarity_threshold: float = 0.4
    retrieval_limit: int = 3
    recent_turn_count: int = 10
    relevant_snippet_count: int = 5
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_base_url: str = "https://api.openai.com/v1"
    summary_model: str = "llama-3.1-70b-versatile"
    db_path: Path = DEFAULT_DB_PATH
    log_dir: Path | None = None

    def __post_init__(self) -> None:
        """Validate thresholds and normalize paths."""
        if isinstance(self.freshness_window, (int, float)):
            self.freshness_window = timedelta(seconds=self.freshness_window)
        self.db_path = Path(self.db_path).expanduser()
        if self.log_dir is not None:
            self.log_dir = Path(self.log_dir).expanduser()

        if self.split_threshold < 1:
            raise ConfigError("split_threshold must be at least 1")
        if self.merge_threshold < 0:
            raise ConfigError("merge_threshold cannot be negative")
        if self.merge_threshold >= self.split_threshold:
            raise ConfigError("merge_threshold must be lower than split_threshold")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ConfigError("similarity_threshold must be between 0 and 1")
        if self.freshness_window.total_seconds() < 0:
            raise ConfigError("freshness_window cannot be negative")
        if self.retrieval_limit < 1:
            raise ConfigError("retrieval_limit must be at least 1")
        if self.recent_turn_count < 0:
            raise ConfigError("recent_turn_count cannot be negative")
        if self.relevant_snippet_count < 1:
            raise ConfigError("relevant_snippet_count must be at least 1")
        if self.embedding_dimensions < 1:
            raise ConfigError("embedding_dimensions must be at least 1")


def load_config(config_path: Path | None = None, use_env: bool = True) -> MemoryConfig:
    """Load MemoryConfig from a JSON file and the environment.

    The config file should have this structure:
    ```json
    {
      "memory": {
        "split_threshold": 20,
        "merge_threshold": 3,
        "freshness_seconds": 3600,
        "similarity_threshold": 0.4,
        "db_path": "~/.mneme/memory.db"
      }
    }
    ```

    Args:
        config_path: Path to config file. Uses DEFAULT_CONFIG_PATH if None.
        use_env: Whether MNEME_* environment variables (and a .env file)
            override the file values.

    Returns:
        MemoryConfig instance with loaded values.

    Raises:
        ConfigError: If a loaded value fails validation.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    data: dict[str, Any] = {}

    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
    else:
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        except OSError as e:
            logger.warning("Cannot read %s: %s. Using defaults.", path, e)

    values = _parse_config(data)

    if use_env:
        load_dotenv(find_dotenv(usecwd=True))
        for env_name, attr in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                values[attr] = value

    return MemoryConfig(**values)


def _parse_config(data: dict[str, Any]) -> dict[str, Any]:
    """Pick the recognised keys out of the "memory" section.

    Args:
        data: Parsed JSON data.

    Returns:
        Keyword arguments for MemoryConfig.
    """
    memory_data = data.get("memory", {}) if isinstance(data, dict) else {}
    if not isinstance(memory_data, dict):
        return {}

    values: dict[str, Any] = {}

    for key in (
        "split_threshold",
        "merge_threshold",
        "retrieval_limit",
        "recent_turn_count",
        "relevant_snippet_count",
        "embedding_dimensions",
    ):
        if isinstance(memory_data.get(key), int):
            values[key] = memory_data[key]

    threshold = memory_data.get("similarity_threshold")
    if isinstance(threshold, (int, float)):
        values["similarity_threshold"] = float(threshold)

    freshness = memory_data.get("freshness_seconds")
    if isinstance(freshness, (int, float)):
        values["freshness_window"] = timedelta(seconds=freshness)

    for key in ("embedding_model", "embedding_base_url", "summary_model", "db_path", "log_dir"):
        if isinstance(memory_data.get(key), str) and memory_data[key]:
            values[key] = memory_data[key]

    return values


def save_config(config: MemoryConfig, config_path: Path | None = None) -> None:
    """Save MemoryConfig to a JSON file.

    Only values that differ from the defaults are written.

    Args:
        config: The config to save.
        config_path: Path to write to. Uses DEFAULT_CONFIG_PATH if None.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    defaults = MemoryConfig()
    memory_data: dict[str, Any] = {}

    for key in (
        "split_threshold",
        "merge_threshold",
        "similarity_threshold",
        "retrieval_limit",
        "recent_turn_count",
        "relevant_snippet_count",
        "embedding_model",
        "embedding_dimensions",
        "embedding_base_url",
        "summary_model",
    ):
        value = getattr(config, key)
        if value != getattr(defaults, key):
            memory_data[key] = value

    if config.freshness_window != defaults.freshness_window:
        memory_data["freshness_seconds"] = config.freshness_window.total_seconds()
    if config.db_path != defaults.db_path:
        memory_data["db_path"] = str(config.db_path)
    if config.log_dir is not None:
        memory_data["log_dir"] = str(config.log_dir)

    data: dict[str, Any] = {"memory": memory_data} if memory_data else {}

    try:
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        raise
