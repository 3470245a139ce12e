"""Routing of extracted facts into a user's categories."""

import logging
from dataclasses import dataclass
from typing import Sequence

from .errors import StoreError
from .models import CandidateEntity, Category, Fact
from .rules import DEFAULT_RULES, GENERAL_CONFIDENCE, CategoryRule, match_rule
from .store import MemoryStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Assignment:
    """Where a fact was stored and how confident the routing was."""

    category_id: str
    category_name: str
    confidence: float
    rule_name: str | None
    fact: Fact


class CategoryAssigner:
    """Appends facts to the category chosen by the rule table.

    Embeddings are not touched here; the indexer refreshes them lazily.
    """

    def __init__(
        self,
        store: MemoryStore,
        rules: Sequence[CategoryRule] = DEFAULT_RULES,
    ) -> None:
        """Initialize the assigner.

        Args:
            store: The MemoryStore holding the categories.
            rules: Routing rules in priority order.
        """
        self.store = store
        self.rules = tuple(rules)

    def assign(self, user_id: str, entity: CandidateEntity) -> Assignment:
        """Route one entity to a category and append it as a fact.

        Args:
            user_id: Owner of the categories.
            entity: The accepted candidate entity.

        Returns:
            The Assignment, with the stored fact.

        Raises:
            StoreError: If the store cannot complete the update.
        """
        general = self.store.ensure_general_category(user_id)

        rule = match_rule(entity, self.rules)
        if rule is None:
            target, confidence = general, GENERAL_CONFIDENCE
        else:
            target, confidence = self._category_for_rule(user_id, rule), rule.confidence

        fact = Fact.from_entity(entity)
        updated = self.store.append_fact(target.id, fact)
        logger.debug(
            "Stored %s fact in %r (%d facts, confidence %.2f)",
            fact.type.value,
            updated.name,
            updated.fact_count,
            confidence,
        )
        return Assignment(
            category_id=updated.id,
            category_name=updated.name,
            confidence=confidence,
            rule_name=rule.name if rule else None,
            fact=fact,
        )

    def _category_for_rule(self, user_id: str, rule: CategoryRule) -> Category:
        """Find the rule's target category, creating it on first use."""
        existing = self.store.find_category_by_name(user_id, rule.target)
        if existing:
            return existing

        try:
            return self.store.create_category(user_id, rule.target, rule.kind, themes=rule.themes)
        except StoreError:
            # Lost a race with another writer creating the same bucket.
            existing = self.store.find_category_by_name(user_id, rule.target)
            if existing:
                return existing
            raise
