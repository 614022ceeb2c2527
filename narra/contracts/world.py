"""
World Contracts

Immutable records describing the narrative world the analytics read:
entities, the knowledge ledger, relationships, perceptions, scenes,
arc snapshots and universe facts.

All records are frozen. Ledgers are append-only: a correction is a new
record layered over the old one, never an edit.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple
import re

from .base import as_utc


Vector = Tuple[float, ...]


def as_vector(values) -> Optional[Vector]:
    """Freeze any sequence of numbers into a tuple vector."""
    if values is None:
        return None
    return tuple(float(v) for v in values)


# =============================================================================
# ENTITIES
# =============================================================================

class EntityType(Enum):
    """Type tags for world entities."""
    CHARACTER = "character"
    LOCATION = "location"
    EVENT = "event"
    SCENE = "scene"
    KNOWLEDGE = "knowledge"
    FACT = "fact"


@dataclass(frozen=True)
class Entity:
    """
    A typed world entity with an optional current embedding.

    Events carry a ``sequence`` and an ``occurs_at`` date; every other type
    leaves them unset. ``references`` lists the identifiers this entity
    points at and must all resolve.
    """
    entity_id: str
    entity_type: EntityType
    name: str
    created_at: datetime
    updated_at: datetime
    embedding: Optional[Vector] = None
    description: str = ""
    categories: Tuple[str, ...] = field(default_factory=tuple)
    attributes: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
    references: Tuple[str, ...] = field(default_factory=tuple)
    sequence: Optional[int] = None
    occurs_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "created_at", as_utc(self.created_at))
        object.__setattr__(self, "updated_at", as_utc(self.updated_at))
        object.__setattr__(self, "occurs_at", as_utc(self.occurs_at))
        if not self.entity_id:
            raise ValueError("entity_id must be a non-empty string")
        if self.updated_at < self.created_at:
            raise ValueError("updated_at must not precede created_at")
        if self.embedding is not None:
            object.__setattr__(self, "embedding", as_vector(self.embedding))
            if not self.embedding:
                raise ValueError("embedding must not be empty")

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def searchable_text(self) -> str:
        """Lowercased description and attribute values for rule matching."""
        parts = [self.name, self.description]
        parts.extend(value for _, value in self.attributes)
        return " ".join(p for p in parts if p).lower()


# =============================================================================
# KNOWLEDGE LEDGER
# =============================================================================

class Certainty(Enum):
    """A character's epistemic stance toward a fact."""
    KNOWS = "knows"
    SUSPECTS = "suspects"
    BELIEVES_WRONGLY = "believes_wrongly"
    UNCERTAIN = "uncertain"
    ASSUMES = "assumes"
    DENIES = "denies"
    FORGOTTEN = "forgotten"

    @property
    def is_informed(self) -> bool:
        return self is Certainty.KNOWS

    @property
    def is_uninformed(self) -> bool:
        return self in (Certainty.DENIES, Certainty.BELIEVES_WRONGLY, Certainty.FORGOTTEN)


class LearningMethod(Enum):
    """How a character came to hold a piece of knowledge."""
    TOLD = "told"
    OVERHEARD = "overheard"
    WITNESSED = "witnessed"
    DISCOVERED = "discovered"
    DEDUCED = "deduced"
    READ = "read"
    REMEMBERED = "remembered"
    INITIAL = "initial"


_WHITESPACE = re.compile(r"\s+")


def normalize_fact_text(text: str) -> str:
    """Lowercase, collapse whitespace and drop trailing punctuation."""
    collapsed = _WHITESPACE.sub(" ", text.strip().lower())
    return collapsed.rstrip(".!?;: ")


@dataclass(frozen=True)
class KnowledgeRecord:
    """
    One append-only entry of the knowledge ledger.

    Facts are grouped by ``fact_ref`` when present, otherwise by target
    entity plus normalized fact text.
    """
    record_id: str
    holder_id: str
    target_id: str
    fact: str
    certainty: Certainty
    method: LearningMethod
    learned_at: datetime
    fact_embedding: Optional[Vector] = None
    fact_ref: Optional[str] = None
    source_character_id: Optional[str] = None
    event_id: Optional[str] = None
    truth_value: Optional[str] = None

    def __post_init__(self):
        if not self.record_id:
            raise ValueError("record_id must be a non-empty string")
        if not self.fact.strip():
            raise ValueError("fact text must not be empty")
        object.__setattr__(self, "learned_at", as_utc(self.learned_at))
        if self.fact_embedding is not None:
            object.__setattr__(self, "fact_embedding", as_vector(self.fact_embedding))

    @property
    def fact_key(self) -> str:
        if self.fact_ref:
            return self.fact_ref
        return f"{self.target_id}|{normalize_fact_text(self.fact)}"


# =============================================================================
# RELATIONSHIPS AND PERCEPTIONS
# =============================================================================

class RelationshipType(Enum):
    """Relationship categories; propagation weights are keyed on these."""
    FAMILY = "family"
    ROMANTIC = "romantic"
    PROFESSIONAL = "professional"
    SOCIAL = "social"
    ANTAGONISTIC = "antagonistic"
    MENTORSHIP = "mentorship"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Relationship:
    """Edge between two characters."""
    from_id: str
    to_id: str
    rel_type: RelationshipType
    subtype: Optional[str] = None
    label: Optional[str] = None
    directed: bool = False

    def __post_init__(self):
        if self.from_id == self.to_id:
            raise ValueError("Relationship endpoints must differ")

    def involves(self, entity_id: str) -> bool:
        return entity_id in (self.from_id, self.to_id)

    def other(self, entity_id: str) -> str:
        return self.to_id if entity_id == self.from_id else self.from_id


@dataclass(frozen=True)
class Perception:
    """
    How an observer sees a target at a point in time.

    Directed and asymmetric. History is the ordered sequence of records for
    one (observer, target) pair.
    """
    observer_id: str
    target_id: str
    perception: str
    recorded_at: datetime
    embedding: Optional[Vector] = None
    feelings: Optional[str] = None
    tension_level: Optional[int] = None
    history_notes: Optional[str] = None

    def __post_init__(self):
        if self.observer_id == self.target_id:
            raise ValueError("A perception must have distinct observer and target")
        if self.tension_level is not None and not 0 <= self.tension_level <= 10:
            raise ValueError("tension_level must be within 0-10")
        object.__setattr__(self, "recorded_at", as_utc(self.recorded_at))
        if self.embedding is not None:
            object.__setattr__(self, "embedding", as_vector(self.embedding))


# =============================================================================
# SCENES
# =============================================================================

@dataclass(frozen=True)
class Scene:
    """Participation record for a scene entity."""
    scene_id: str
    occurred_at: datetime
    participants: Tuple[str, ...]
    event_id: Optional[str] = None
    location_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "occurred_at", as_utc(self.occurred_at))
        object.__setattr__(self, "participants", tuple(self.participants))

    def includes_all(self, entity_ids) -> bool:
        return all(e in self.participants for e in entity_ids)


# =============================================================================
# ARC SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class ArcSnapshot:
    """
    An entity's embedding at a moment in time.

    ``delta`` is the cosine distance from the previous snapshot of the same
    entity (0.0 for the baseline).
    """
    entity_id: str
    embedding: Vector
    recorded_at: datetime
    sequence: int
    delta: float = 0.0
    event_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "embedding", as_vector(self.embedding))
        if not self.embedding:
            raise ValueError("ArcSnapshot embedding must not be empty")
        object.__setattr__(self, "recorded_at", as_utc(self.recorded_at))

    @property
    def is_baseline(self) -> bool:
        return self.sequence == 0


# =============================================================================
# UNIVERSE FACTS
# =============================================================================

class EnforcementLevel(Enum):
    """How strongly a universe fact constrains the world."""
    INFORMATIONAL = "informational"
    WARNING = "warning"
    STRICT = "strict"


@dataclass(frozen=True)
class UniverseFact:
    """
    A world rule.

    A fact with no ``applies_to`` entries is global; a global fact with
    categories applies to entities sharing at least one category.
    """
    fact_id: str
    title: str
    description: str
    enforcement: EnforcementLevel
    categories: Tuple[str, ...] = field(default_factory=tuple)
    applies_to: Tuple[str, ...] = field(default_factory=tuple)

    def applies(self, entity: Entity) -> bool:
        if self.applies_to:
            return entity.entity_id in self.applies_to
        if not self.categories:
            return True
        return bool(set(self.categories) & set(entity.categories))
