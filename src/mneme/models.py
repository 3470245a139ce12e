"""Data models for the memory system."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO timestamp, treating naive values as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class EntityType(Enum):
    """Families of facts the extractor recognises."""

    NAME = "name"
    PET = "pet"
    LOCATION = "location"
    RELATIONSHIP = "relationship"
    PREFERENCE = "preference"
    DATE = "date"
    MEDICAL = "medical"
    WORK = "work"


class _Payload:
    """Shared behaviour for the typed fact payloads."""

    entity_type: ClassVar[EntityType]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dict, dropping unset fields."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def values(self) -> tuple[str, ...]:
        """All populated string values, used for keyword matching."""
        return tuple(str(v) for v in asdict(self).values() if v)

    def slot(self) -> str | None:
        """Key for single-valued facts that newer statements replace.

        Returns None for families where many values coexist (pets,
        preferences, conditions).
        """
        return None

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class NamePayload(_Payload):
    name: str

    entity_type: ClassVar[EntityType] = EntityType.NAME

    def slot(self) -> str | None:
        return "name"

    def describe(self) -> str:
        return f"Name: {self.name}"


@dataclass(frozen=True)
class PetPayload(_Payload):
    name: str
    species: str

    entity_type: ClassVar[EntityType] = EntityType.PET

    def describe(self) -> str:
        article = "an" if self.species[:1].lower() in "aeiou" else "a"
        return f"Pet: {self.name} is {article} {self.species}"


@dataclass(frozen=True)
class LocationPayload(_Payload):
    """Where the user lives, comes from, or works (kind)."""

    kind: str
    place: str

    entity_type: ClassVar[EntityType] = EntityType.LOCATION

    def slot(self) -> str | None:
        return f"location:{self.kind}"

    def describe(self) -> str:
        labels = {"residence": "Lives in", "origin": "From", "work": "Works in"}
        return f"{labels.get(self.kind, 'Location')}: {self.place}"


@dataclass(frozen=True)
class RelationshipPayload(_Payload):
    relationship: str
    name: str

    entity_type: ClassVar[EntityType] = EntityType.RELATIONSHIP

    def slot(self) -> str | None:
        if self.relationship in {"wife", "husband", "partner", "mother", "father"}:
            return f"relationship:{self.relationship}"
        return None

    def describe(self) -> str:
        return f"{self.relationship.capitalize()}: {self.name}"


@dataclass(frozen=True)
class PreferencePayload(_Payload):
    """A like, dislike or favorite; subject is set for favorites only."""

    sentiment: str
    value: str
    subject: str | None = None

    entity_type: ClassVar[EntityType] = EntityType.PREFERENCE

    def slot(self) -> str | None:
        if self.sentiment == "favorite" and self.subject:
            return f"favorite:{self.subject}"
        return None

    def describe(self) -> str:
        if self.sentiment == "favorite":
            return f"Favorite {self.subject or 'thing'}: {self.value}"
        return f"{self.sentiment.capitalize()}: {self.value}"


@dataclass(frozen=True)
class DatePayload(_Payload):
    occasion: str
    date: str

    entity_type: ClassVar[EntityType] = EntityType.DATE

    def slot(self) -> str | None:
        return f"date:{self.occasion}"

    def describe(self) -> str:
        return f"{self.occasion.capitalize()}: {self.date}"


@dataclass(frozen=True)
class MedicalPayload(_Payload):
    kind: str
    value: str

    entity_type: ClassVar[EntityType] = EntityType.MEDICAL

    def describe(self) -> str:
        return f"{self.kind.capitalize()}: {self.value}"


@dataclass(frozen=True)
class WorkPayload(_Payload):
    """Profession ("a software engineer") or employer ("at Acme")."""

    kind: str
    value: str

    entity_type: ClassVar[EntityType] = EntityType.WORK

    def slot(self) -> str | None:
        return f"work:{self.kind}"

    def describe(self) -> str:
        return f"{self.kind.capitalize()}: {self.value}"


Payload = (
    NamePayload
    | PetPayload
    | LocationPayload
    | RelationshipPayload
    | PreferencePayload
    | DatePayload
    | MedicalPayload
    | WorkPayload
)

PAYLOAD_TYPES: dict[EntityType, type] = {
    EntityType.NAME: NamePayload,
    EntityType.PET: PetPayload,
    EntityType.LOCATION: LocationPayload,
    EntityType.RELATIONSHIP: RelationshipPayload,
    EntityType.PREFERENCE: PreferencePayload,
    EntityType.DATE: DatePayload,
    EntityType.MEDICAL: MedicalPayload,
    EntityType.WORK: WorkPayload,
}


def payload_from_dict(entity_type: EntityType | str, data: dict[str, Any]) -> Payload:
    """Rebuild the payload variant for an entity family.

    Args:
        entity_type: The family, as enum or its string value.
        data: Dict produced by the payload's to_dict().

    Returns:
        The typed payload.

    Raises:
        ValueError: If the family is unknown or required fields are missing.
    """
    payload_cls = PAYLOAD_TYPES[EntityType(entity_type)]
    names = {f.name for f in fields(payload_cls)}
    try:
        return payload_cls(**{k: v for k, v in data.items() if k in names})
    except TypeError as e:
        raise ValueError(f"Invalid {payload_cls.__name__} data: {data}") from e


@dataclass(frozen=True)
class CandidateEntity:
    """A fact candidate produced by the extractor for one message.

    Attributes:
        payload: Typed payload; its class determines the entity family.
        confidence: Heuristic confidence of the pattern that matched.
        raw_text: The span of the message that matched.
    """

    payload: Payload
    confidence: float
    raw_text: str

    @property
    def type(self) -> EntityType:
        return self.payload.entity_type


@dataclass(frozen=True)
class Fact:
    """A stored fact. Facts are append-only and never deduplicated."""

    payload: Payload
    confidence: float
    raw_text: str
    recorded_at: datetime = field(default_factory=utcnow)

    @property
    def type(self) -> EntityType:
        return self.payload.entity_type

    @classmethod
    def from_entity(cls, entity: CandidateEntity, recorded_at: datetime | None = None) -> Fact:
        return cls(
            payload=entity.payload,
            confidence=entity.confidence,
            raw_text=entity.raw_text,
            recorded_at=recorded_at or utcnow(),
        )

    def describe(self) -> str:
        """One human-readable line for embeddings and prompts."""
        return self.payload.describe()

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "value": self.payload.to_dict(),
            "confidence": self.confidence,
            "raw_text": self.raw_text,
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Fact:
        return cls(
            payload=payload_from_dict(data["type"], data.get("value", {})),
            confidence=float(data.get("confidence", 0.0)),
            raw_text=data.get("raw_text", ""),
            recorded_at=parse_timestamp(data.get("recorded_at")) or utcnow(),
        )


class CategoryKind(Enum):
    """Role of a category in the hierarchy."""

    GENERAL = "general"
    PRIMARY = "primary"
    SUB = "sub"


@dataclass
class Category:
    """A named bucket of facts about one user.

    fact_count is derived from the fact list so the two never disagree.
    """

    id: str
    user_id: str
    name: str
    kind: CategoryKind
    facts: list[Fact] = field(default_factory=list)
    themes: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    parent_id: str | None = None

    @property
    def fact_count(self) -> int:
        return len(self.facts)

    @property
    def is_general(self) -> bool:
        return self.kind is CategoryKind.GENERAL


@dataclass(frozen=True)
class CategoryEmbedding:
    """Semantic summary of a category, one row per category."""

    category_id: str
    vector: list[float]
    content: str
    created_at: datetime = field(default_factory=utcnow)

    def is_fresh(self, window: timedelta, now: datetime | None = None) -> bool:
        """True if the embedding is younger than the freshness window."""
        return (now or utcnow()) - self.created_at < window


@dataclass
class UserProfile:
    """Denormalized cache of identity facts for O(1) lookup."""

    user_id: str
    name: str | None = None
    preferences: dict[str, list[str]] = field(default_factory=dict)
    facts: dict[str, str] = field(default_factory=dict)
    updated_at: datetime | None = None


class RetrievalStage(Enum):
    """Stage of the hybrid retriever that produced a batch."""

    IDENTITY = "identity"
    KEYWORD = "keyword"
    EMBEDDING = "embedding"
    FALLBACK = "fallback"


@dataclass
class CategoryBatch:
    """Retrieved facts of one category, ready for context assembly."""

    category_id: str | None
    category_name: str
    facts: list[Fact]
    summary: str
    confidence: float
    stage: RetrievalStage


@dataclass(frozen=True)
class Turn:
    """A raw conversation turn supplied by the transport layer."""

    role: str
    content: str
    conversation_id: str | None = None


@dataclass
class ConversationSummary:
    """LLM-generated summary and topics for one conversation."""

    conversation_id: str
    summary: str
    topics: list[str] = field(default_factory=list)
    updated_at: datetime | None = None
