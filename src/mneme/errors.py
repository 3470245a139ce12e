"""Exceptions raised by the memory subsystem."""


class MnemeError(Exception):
    """Base class for memory subsystem errors."""

    pass


class ConfigError(MnemeError, ValueError):
    """Raised when a configuration value is invalid."""

    pass


class StoreError(MnemeError):
    """Raised when the persistent store cannot complete an operation."""

    pass


class CategoryNotFoundError(StoreError):
    """Raised when a category id does not exist."""

    def __init__(self, category_id: str) -> None:
        super().__init__(f"Category not found: {category_id}")
        self.category_id = category_id


class EmbeddingError(MnemeError):
    """Raised when the embedding provider fails to produce a vector."""

    pass
