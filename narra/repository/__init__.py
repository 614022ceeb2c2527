"""
Repository Layer

RESPONSIBILITY: Read access to the narrative world
OUTPUTS: Entities, embeddings and ledger records (immutable contracts)

Each analytics component depends only on the narrow reader interfaces it
needs. Concrete storage lives behind these interfaces; the in-memory
implementation in ``memory`` is the reference used by tests and callers
that hold the world in process.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Collection, List, Optional, Sequence, Tuple

from ..contracts.world import (
    Entity, EntityType, KnowledgeRecord, Relationship, RelationshipType,
    Perception, Scene, UniverseFact, EnforcementLevel, Certainty, Vector
)


# =============================================================================
# FILTERS
# =============================================================================

@dataclass(frozen=True)
class KnowledgeFilter:
    """Match knowledge records; unset fields match everything."""
    holder_id: Optional[str] = None
    target_id: Optional[str] = None
    fact_key: Optional[str] = None
    certainty: Optional[Certainty] = None

    def matches(self, record: KnowledgeRecord) -> bool:
        if self.holder_id is not None and record.holder_id != self.holder_id:
            return False
        if self.target_id is not None and record.target_id != self.target_id:
            return False
        if self.fact_key is not None and record.fact_key != self.fact_key:
            return False
        if self.certainty is not None and record.certainty != self.certainty:
            return False
        return True


@dataclass(frozen=True)
class RelationshipFilter:
    """Match relationships touching ``character_id`` and/or of ``rel_type``."""
    character_id: Optional[str] = None
    rel_type: Optional[RelationshipType] = None

    def matches(self, relationship: Relationship) -> bool:
        if self.character_id is not None and not relationship.involves(self.character_id):
            return False
        if self.rel_type is not None and relationship.rel_type != self.rel_type:
            return False
        return True


@dataclass(frozen=True)
class PerceptionFilter:
    observer_id: Optional[str] = None
    target_id: Optional[str] = None

    def matches(self, perception: Perception) -> bool:
        if self.observer_id is not None and perception.observer_id != self.observer_id:
            return False
        if self.target_id is not None and perception.target_id != self.target_id:
            return False
        return True


@dataclass(frozen=True)
class FactFilter:
    enforcement: Optional[EnforcementLevel] = None
    applies_to: Optional[str] = None

    def matches(self, fact: UniverseFact) -> bool:
        if self.enforcement is not None and fact.enforcement != self.enforcement:
            return False
        if self.applies_to is not None and fact.applies_to and self.applies_to not in fact.applies_to:
            return False
        return True


# =============================================================================
# READER INTERFACES (Dependency Inversion)
# =============================================================================

class EntityReader:
    """Entity lookup."""

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        """Get an entity, or None if absent."""
        raise NotImplementedError

    def get_embedding(self, entity_id: str) -> Optional[Vector]:
        """Get an entity's current embedding, or None if absent."""
        raise NotImplementedError

    def list_entities_by_type(self, entity_type: EntityType) -> List[Entity]:
        """All entities of a type, ordered by id."""
        raise NotImplementedError


class KnowledgeReader:
    """Knowledge ledger access."""

    def list_knowledge(self, knowledge_filter: Optional[KnowledgeFilter] = None) -> List[KnowledgeRecord]:
        """Matching records in ledger (append) order."""
        raise NotImplementedError


class RelationshipReader:

    def list_relationships(
        self,
        relationship_filter: Optional[RelationshipFilter] = None
    ) -> List[Relationship]:
        raise NotImplementedError


class PerceptionReader:
    """Perception ledger access."""

    def list_perceptions(self, perception_filter: Optional[PerceptionFilter] = None) -> List[Perception]:
        """Matching perceptions in ledger (append) order."""
        raise NotImplementedError


class SceneReader:
    """Scene participation index."""

    def list_scenes_by_participants(self, entity_ids: Sequence[str]) -> List[Scene]:
        """Scenes in which every listed entity participates."""
        raise NotImplementedError

    def get_scene(self, scene_id: str) -> Optional[Scene]:
        raise NotImplementedError


class FactReader:

    def list_facts(self, fact_filter: Optional[FactFilter] = None) -> List[UniverseFact]:
        raise NotImplementedError


class WorldRepository(
    EntityReader,
    KnowledgeReader,
    RelationshipReader,
    PerceptionReader,
    SceneReader,
    FactReader,
):
    """Full read surface over one consistent view of the world."""


# =============================================================================
# NEIGHBOUR CANDIDATES
# =============================================================================

# Entity types searched when looking for entities aligned with a direction
NEIGHBOR_TYPES: Tuple[EntityType, ...] = (
    EntityType.CHARACTER, EntityType.LOCATION, EntityType.EVENT, EntityType.SCENE
)


def embedded_entities(
    reader: EntityReader,
    entity_types: Optional[Sequence[EntityType]] = None,
    exclude: Collection[str] = ()
) -> List[Tuple[str, Vector]]:
    """(id, embedding) for every embedded entity of the given types, by type then id."""
    types = entity_types or list(EntityType)
    return [
        (entity.entity_id, entity.embedding)
        for entity_type in types
        for entity in reader.list_entities_by_type(entity_type)
        if entity.embedding is not None and entity.entity_id not in exclude
    ]


from .memory import InMemoryWorldRepository  # noqa: E402
from .overlay import HypotheticalWorld  # noqa: E402

__all__ = [
    'KnowledgeFilter',
    'RelationshipFilter',
    'PerceptionFilter',
    'FactFilter',
    'EntityReader',
    'KnowledgeReader',
    'RelationshipReader',
    'PerceptionReader',
    'SceneReader',
    'FactReader',
    'WorldRepository',
    'InMemoryWorldRepository',
    'HypotheticalWorld',
    'NEIGHBOR_TYPES',
    'embedded_entities',
]
