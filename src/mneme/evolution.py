"""Detection of categories that have outgrown or undergrown their bucket.

Evaluation is purely detective. Nothing here splits, merges or moves
facts; the report is an extension point for a future redistribution step.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from .config import MemoryConfig
from .models import Category

MAX_MERGE_GROUP = 3


class CategoryState(Enum):
    """Growth state of a category, derived from its fact count."""

    EMPTY = "empty"
    GROWING = "growing"
    SPLIT_CANDIDATE = "split_candidate"


@dataclass
class EvolutionReport:
    """Result of evaluating a user's categories."""

    states: dict[str, CategoryState] = field(default_factory=dict)
    split_candidates: list[str] = field(default_factory=list)
    merge_candidates: list[str] = field(default_factory=list)
    merge_groups: list[list[str]] = field(default_factory=list)

    @property
    def needs_attention(self) -> bool:
        return bool(self.split_candidates or self.merge_groups)


class EvolutionEvaluator:
    """Flags split and merge candidates using the configured thresholds."""

    def __init__(self, config: MemoryConfig | None = None) -> None:
        self.config = config or MemoryConfig()

    def state_of(self, category: Category) -> CategoryState:
        if category.fact_count == 0:
            return CategoryState.EMPTY
        if category.fact_count >= self.config.split_threshold:
            return CategoryState.SPLIT_CANDIDATE
        return CategoryState.GROWING

    def is_split_candidate(self, category: Category) -> bool:
        return self.state_of(category) is CategoryState.SPLIT_CANDIDATE

    def is_merge_candidate(self, category: Category) -> bool:
        """Small non-general categories are merge candidates.

        The general category is the fallback sink and is never merged.
        """
        return not category.is_general and category.fact_count < self.config.merge_threshold

    def merge_groups(self, categories: Sequence[Category]) -> list[list[str]]:
        """Group small categories together, at most three per group.

        A lone small category forms no group.
        """
        small = [c.id for c in categories if self.is_merge_candidate(c)]
        return [
            group
            for group in (small[i:i + MAX_MERGE_GROUP] for i in range(0, len(small), MAX_MERGE_GROUP))
            if len(group) > 1
        ]

    def evaluate(self, categories: Sequence[Category]) -> EvolutionReport:
        """Evaluate every category; the categories are left untouched."""
        report = EvolutionReport()
        for category in categories:
            report.states[category.id] = self.state_of(category)
            if self.is_split_candidate(category):
                report.split_candidates.append(category.id)
            if self.is_merge_candidate(category):
                report.merge_candidates.append(category.id)
        report.merge_groups = self.merge_groups(categories)
        return report
