"""Pattern-based fact extraction from user messages."""

import logging
import re
from dataclasses import dataclass
from typing import Callable

from .models import (
    CandidateEntity,
    DatePayload,
    EntityType,
    LocationPayload,
    MedicalPayload,
    NamePayload,
    Payload,
    PetPayload,
    PreferencePayload,
    RelationshipPayload,
    WorkPayload,
)

logger = logging.getLogger(__name__)

QUESTION_LEAD = re.compile(
    r"^(?:what|who|where|when|why|how|do you|can you|could you|would you"
    r"|will you|are you|is|does|did)\b",
    re.IGNORECASE,
)

SPECIES = (
    "cat", "dog", "pet", "bird", "fish", "hamster", "rabbit", "parrot",
    "horse", "turtle", "snake", "lizard", "ferret", "kitten", "puppy",
)
_SPECIES = r"(?:" + "|".join(SPECIES) + r")(?:e?s)?"

RELATIONSHIPS = (
    "wife", "husband", "partner", "brother", "sister",
    "mother", "father", "son", "daughter", "friend",
)
RELATIONSHIP_ALIASES = {"mom": "mother", "mum": "mother", "dad": "father"}
_RELATIONSHIP = r"(?:" + "|".join(RELATIONSHIPS + tuple(RELATIONSHIP_ALIASES)) + r")"

OCCASIONS = ("birthday", "anniversary", "wedding")

_MONTH = (
    r"(?:january|february|march|april|may|june|july|august|september"
    r"|october|november|december|jan|feb|mar|apr|jun|jul|aug|sep|sept|oct|nov|dec)"
)
_DATE = (
    rf"(?:{_MONTH} \d{{1,2}}(?:st|nd|rd|th)?(?:,? \d{{4}})?"
    rf"|\d{{1,2}}(?:st|nd|rd|th)? (?:of )?{_MONTH}(?:,? \d{{4}})?)"
)

_CONDITIONS = (
    r"(?:diabetes|asthma|migraines?|arthritis|adhd|anxiety|depression"
    r"|hypertension|epilepsy|celiac disease|high blood pressure"
    r"|(?:[\w-]+ )?(?:disease|syndrome|disorder))"
)

# Clause value: everything up to the next sentence or clause break.
_CLAUSE = r"(?P<value>[^.,!;?]+)"
_WORD_NAME = r"[A-Za-z][\w'-]*"
_PLACE = r"(?P<place>[A-Za-z][A-Za-z .'-]*?)(?=[.,!;?]| and | with | for |$)"

# Tokens that a loose "name" group can capture but are never names.
NOT_NAMES = {
    "a", "an", "the", "this", "that", "it", "he", "she", "they", "there",
    "here", "what", "who", "very", "so", "not", "also", "really", "is",
    "my", "your", "our", "just", "still", "i",
}


@dataclass(frozen=True)
class ExtractionPattern:
    """One textual pattern of an entity family.

    Attributes:
        regex: Compiled pattern, searched case-insensitively.
        build: Turns a match into payloads; an empty list rejects the match.
        confidence: Fixed heuristic confidence for entities it yields.
    """

    regex: re.Pattern[str]
    build: Callable[[re.Match[str]], list[Payload]]
    confidence: float


def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def _clean(value: str) -> str:
    return " ".join(value.split()).strip(" '\"")


def _as_name(token: str) -> str | None:
    token = token.strip(" '\".,!;")
    if not token or token.lower() in NOT_NAMES:
        return None
    return token[0].upper() + token[1:]


def singularize_species(word: str) -> str:
    """Reduce a plural species word ("cats", "fishes") to its singular."""
    word = word.lower()
    if word in SPECIES:
        return word
    if word.endswith("ies") and word[:-3] + "y" in SPECIES:
        return word[:-3] + "y"
    if word.endswith("es") and word[:-2] in SPECIES:
        return word[:-2]
    if word.endswith("s") and word[:-1] in SPECIES:
        return word[:-1]
    return word


def split_names(names: str) -> list[str]:
    """Split "Holly and Benny" or "Tom, Jerry & Max" into single names."""
    result = []
    for part in re.split(r",\s*|\s+and\s+|\s*&\s*", names):
        first = re.match(_WORD_NAME, part.strip())
        if first:
            name = _as_name(first.group(0))
            if name:
                result.append(name)
    return result


def _name(match: re.Match[str]) -> list[Payload]:
    name = _as_name(match.group("name"))
    return [NamePayload(name=name)] if name else []


def _pet_group(match: re.Match[str]) -> list[Payload]:
    species = singularize_species(match.group("species"))
    return [PetPayload(name=n, species=species) for n in split_names(match.group("names"))]


def _pet_single(match: re.Match[str]) -> list[Payload]:
    name = _as_name(match.group("name"))
    if not name:
        return []
    return [PetPayload(name=name, species=singularize_species(match.group("species")))]


def _location(kind: str) -> Callable[[re.Match[str]], list[Payload]]:
    def build(match: re.Match[str]) -> list[Payload]:
        place = _clean(match.group("place"))
        return [LocationPayload(kind=kind, place=place)] if place else []

    return build


def _relationship(match: re.Match[str]) -> list[Payload]:
    relationship = match.group("relationship").lower()
    relationship = RELATIONSHIP_ALIASES.get(relationship, relationship)
    token = match.group("name")
    # Without "named"/"called", only a capitalized word is a name:
    # "my brother lives in Paris", "my wife is amazing".
    if (match.group("connector") or "").strip() in ("", "is") and not token[:1].isupper():
        return []
    name = _as_name(token)
    return [RelationshipPayload(relationship=relationship, name=name)] if name else []


def _preference(sentiment: str) -> Callable[[re.Match[str]], list[Payload]]:
    def build(match: re.Match[str]) -> list[Payload]:
        value = _clean(match.group("value"))
        if not value:
            return []
        subject = match.groupdict().get("subject")
        return [PreferencePayload(sentiment=sentiment, value=value, subject=subject and subject.lower())]

    return build


def _date(match: re.Match[str]) -> list[Payload]:
    occasion = (match.groupdict().get("occasion") or "birthday").lower()
    return [DatePayload(occasion=occasion, date=_clean(match.group("date")))]


def _medical(kind: str) -> Callable[[re.Match[str]], list[Payload]]:
    def build(match: re.Match[str]) -> list[Payload]:
        value = _clean(match.group("value"))
        return [MedicalPayload(kind=kind, value=value)] if value else []

    return build


def _work(kind: str) -> Callable[[re.Match[str]], list[Payload]]:
    def build(match: re.Match[str]) -> list[Payload]:
        value = _clean(match.group("value"))
        if not value or value.lower().startswith(("fan of", "big fan", "bit ", "little ")):
            return []
        return [WorkPayload(kind=kind, value=value)]

    return build


# Family → ordered patterns. The first pattern that yields payloads wins.
EXTRACTION_PATTERNS: dict[EntityType, list[ExtractionPattern]] = {
    EntityType.NAME: [
        ExtractionPattern(_compile(rf"\bmy name is (?P<name>{_WORD_NAME})"), _name, 0.95),
        ExtractionPattern(_compile(rf"\b(?:you can )?call me (?P<name>{_WORD_NAME})"), _name, 0.9),
        ExtractionPattern(_compile(rf"\bi(?:'m| am) called (?P<name>{_WORD_NAME})"), _name, 0.9),
    ],
    EntityType.PET: [
        ExtractionPattern(
            _compile(
                rf"\b(?:i|we) have (?:(?P<count>\w+) )?(?P<species>{_SPECIES}) "
                rf"(?:named|called) (?P<names>{_WORD_NAME}(?:(?:,\s*|\s+and\s+|\s*&\s*){_WORD_NAME})*)"
            ),
            _pet_group,
            0.9,
        ),
        ExtractionPattern(
            _compile(
                rf"\bmy (?P<species>{_SPECIES})(?:'s name is| is named| is called| named| called) "
                rf"(?P<name>{_WORD_NAME})"
            ),
            _pet_single,
            0.85,
        ),
        ExtractionPattern(
            _compile(rf"\b(?P<name>{_WORD_NAME}) (?:is|are) my (?P<species>{_SPECIES})\b"),
            _pet_single,
            0.75,
        ),
    ],
    EntityType.LOCATION: [
        ExtractionPattern(_compile(rf"\bi (?:live|reside|stay) (?:in|at) {_PLACE}"), _location("residence"), 0.9),
        ExtractionPattern(_compile(rf"\bi (?:just )?(?:moved|relocated) to {_PLACE}"), _location("residence"), 0.85),
        ExtractionPattern(_compile(rf"\bi(?:'m| am) (?:originally )?from {_PLACE}"), _location("origin"), 0.85),
        ExtractionPattern(_compile(rf"\bi work (?:in|at) {_PLACE}"), _location("work"), 0.75),
    ],
    EntityType.RELATIONSHIP: [
        ExtractionPattern(
            _compile(
                rf"\bmy (?P<relationship>{_RELATIONSHIP})(?P<connector>'s name is| is named| is called| named| called| is)? "
                rf"(?P<name>{_WORD_NAME})"
            ),
            _relationship,
            0.85,
        ),
    ],
    EntityType.PREFERENCE: [
        ExtractionPattern(
            _compile(r"\bmy favou?rite (?P<subject>\w+) is " + _CLAUSE),
            _preference("favorite"),
            0.9,
        ),
        ExtractionPattern(
            _compile(r"\bi (?:really )?(?:hate|dislike|don't like|do not like|can't stand) " + _CLAUSE),
            _preference("dislikes"),
            0.85,
        ),
        ExtractionPattern(
            _compile(r"\bi (?:really )?(?:love|like|enjoy|prefer) " + _CLAUSE),
            _preference("likes"),
            0.8,
        ),
    ],
    EntityType.DATE: [
        ExtractionPattern(
            _compile(rf"\bmy (?P<occasion>{'|'.join(OCCASIONS)})(?: day)? is (?:on )?(?P<date>{_DATE})"),
            _date,
            0.9,
        ),
        ExtractionPattern(_compile(rf"\bi was born on (?P<date>{_DATE})"), _date, 0.85),
    ],
    EntityType.MEDICAL: [
        ExtractionPattern(_compile(r"\bi(?:'m| am) allergic to " + _CLAUSE), _medical("allergy"), 0.95),
        ExtractionPattern(
            _compile(r"\bi have (?:an? )?(?P<value>[\w-]+) allergy\b"),
            _medical("allergy"),
            0.9,
        ),
        ExtractionPattern(
            _compile(r"\bi (?:suffer from|have been diagnosed with|was diagnosed with) " + _CLAUSE),
            _medical("condition"),
            0.85,
        ),
        ExtractionPattern(_compile(rf"\bi have (?P<value>{_CONDITIONS})"), _medical("condition"), 0.8),
    ],
    EntityType.WORK: [
        ExtractionPattern(_compile(r"\bi work as (?:an? )?" + _CLAUSE), _work("profession"), 0.85),
        ExtractionPattern(_compile(r"\bi work (?:at|for) " + _CLAUSE), _work("employer"), 0.85),
        ExtractionPattern(_compile(r"\bi(?:'m| am) an? " + _CLAUSE), _work("profession"), 0.75),
    ],
}


def is_question(text: str) -> bool:
    """Check whether a message is interrogative.

    Questions end with "?" or open with a question lead-word. Facts are
    never extracted from them: "what's my name?" must not store a name.
    """
    stripped = text.strip()
    return stripped.endswith("?") or bool(QUESTION_LEAD.match(stripped))


class EntityExtractor:
    """Extracts typed candidate facts from a single message."""

    def __init__(
        self,
        patterns: dict[EntityType, list[ExtractionPattern]] | None = None,
    ) -> None:
        """Initialize the extractor.

        Args:
            patterns: Family → ordered pattern table. Defaults to
                EXTRACTION_PATTERNS.
        """
        self.patterns = patterns if patterns is not None else EXTRACTION_PATTERNS

    def extract(self, text: str) -> list[CandidateEntity]:
        """Extract candidate entities from a message.

        Args:
            text: Raw message text.

        Returns:
            Entities in family order; empty for questions, blank text or
            when nothing matches.
        """
        if not text or not text.strip() or is_question(text):
            return []

        entities: list[CandidateEntity] = []
        for family, patterns in self.patterns.items():
            entities.extend(self._extract_family(family, patterns, text))
        return entities

    def _extract_family(
        self,
        family: EntityType,
        patterns: list[ExtractionPattern],
        text: str,
    ) -> list[CandidateEntity]:
        """Try a family's patterns in order; the first one that yields wins."""
        for pattern in patterns:
            try:
                match = pattern.regex.search(text)
                if not match:
                    continue
                payloads = pattern.build(match)
            except Exception as e:
                logger.warning(f"Pattern {pattern.regex.pattern!r} failed for {family.value}: {e}")
                continue

            if payloads:
                raw_text = match.group(0).strip()
                return [
                    CandidateEntity(payload=p, confidence=pattern.confidence, raw_text=raw_text)
                    for p in payloads
                ]
        return []
