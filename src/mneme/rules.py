"""Prioritized rule table that routes facts to named categories."""

from dataclasses import dataclass, field
from typing import Callable, Sequence

from .models import CandidateEntity, CategoryKind, EntityType, Fact

FactLike = CandidateEntity | Fact
Predicate = Callable[[FactLike], bool]

GENERAL_CATEGORY_NAME = "General Knowledge"
GENERAL_CONFIDENCE = 0.5


def family_is(*families: EntityType) -> Predicate:
    """Predicate: the fact belongs to one of the given families."""
    wanted = frozenset(families)

    def predicate(fact: FactLike) -> bool:
        return fact.type in wanted

    return predicate


def mentions_any(*keywords: str) -> Predicate:
    """Predicate: a payload value or the family name contains a keyword."""
    lowered = tuple(k.lower() for k in keywords)

    def predicate(fact: FactLike) -> bool:
        haystack = " ".join((fact.type.value, *fact.payload.values())).lower()
        return any(keyword in haystack for keyword in lowered)

    return predicate


def any_of(*predicates: Predicate) -> Predicate:
    def predicate(fact: FactLike) -> bool:
        return any(p(fact) for p in predicates)

    return predicate


@dataclass(frozen=True)
class CategoryRule:
    """One row of the routing table.

    Attributes:
        name: Rule identifier, reported with each assignment.
        predicate: Decides whether the rule applies to a fact.
        target: Display name of the category the fact is routed to.
        confidence: Assignment confidence when the rule wins.
        kind: Kind used when the target category is first created.
        themes: Theme tags for a newly created target category.
    """

    name: str
    predicate: Predicate
    target: str
    confidence: float
    kind: CategoryKind = CategoryKind.PRIMARY
    themes: tuple[str, ...] = field(default_factory=tuple)


DEFAULT_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(
        name="pets",
        predicate=family_is(EntityType.PET),
        target="Pets and Animals",
        confidence=0.9,
        kind=CategoryKind.SUB,
        themes=("pets", "animals", "companions"),
    ),
    CategoryRule(
        name="identity_relationships",
        predicate=any_of(
            family_is(EntityType.NAME, EntityType.RELATIONSHIP),
            mentions_any("family", "brother", "sister", "wife", "husband", "parent", "friend"),
        ),
        target="Identity and Relationships",
        confidence=0.8,
        themes=("identity", "family", "relationships"),
    ),
    CategoryRule(
        name="living_environment",
        predicate=any_of(
            family_is(EntityType.LOCATION),
            mentions_any("home", "house", "apartment", "city"),
        ),
        target="Living Environment",
        confidence=0.8,
        themes=("home", "location"),
    ),
    CategoryRule(
        name="professional",
        predicate=any_of(
            family_is(EntityType.WORK),
            mentions_any("job", "developer", "engineer", "company", "skill", "project"),
        ),
        target="Professional",
        confidence=0.8,
        themes=("work", "career"),
    ),
    CategoryRule(
        name="interests_preferences",
        predicate=any_of(
            family_is(EntityType.PREFERENCE),
            mentions_any("hobby", "favorite", "favourite"),
        ),
        target="Interests and Preferences",
        confidence=0.7,
        themes=("interests", "preferences"),
    ),
    CategoryRule(
        name="health_medical",
        predicate=any_of(
            family_is(EntityType.MEDICAL),
            mentions_any("allergic", "allergy", "medical", "health", "doctor"),
        ),
        target="Health and Medical",
        confidence=0.9,
        themes=("health",),
    ),
    CategoryRule(
        name="events_dates",
        predicate=any_of(
            family_is(EntityType.DATE),
            mentions_any("birthday", "anniversary"),
        ),
        target="Events and Dates",
        confidence=0.7,
        themes=("events", "dates"),
    ),
)


def match_rule(fact: FactLike, rules: Sequence[CategoryRule] = DEFAULT_RULES) -> CategoryRule | None:
    """Return the first rule whose predicate accepts the fact.

    Args:
        fact: A candidate entity or stored fact.
        rules: Rules in priority order.

    Returns:
        The winning rule, or None when the fact belongs in the general category.
    """
    for rule in rules:
        if rule.predicate(fact):
            return rule
    return None
