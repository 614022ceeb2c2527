"""
Hypothetical World Overlay

Layers uncommitted knowledge records and embedding overrides over any
repository. Reads see the base world plus the overlay; the base is never
written to. Used for what-if simulation and discarded after the call.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..contracts.world import (
    Entity, EntityType, KnowledgeRecord, Relationship, Perception, Scene,
    UniverseFact, Vector, as_vector
)
from . import (
    WorldRepository, KnowledgeFilter, RelationshipFilter, PerceptionFilter, FactFilter
)


class HypotheticalWorld(WorldRepository):
    """Read-only view of ``base`` with extra knowledge and replaced embeddings."""

    def __init__(
        self,
        base: WorldRepository,
        extra_knowledge: Sequence[KnowledgeRecord] = (),
        embedding_overrides: Optional[Mapping[str, Vector]] = None
    ):
        self._base = base
        self._extra_knowledge: Tuple[KnowledgeRecord, ...] = tuple(extra_knowledge)
        self._overrides: Dict[str, Vector] = {
            entity_id: as_vector(vector)
            for entity_id, vector in (embedding_overrides or {}).items()
        }

    @property
    def base(self) -> WorldRepository:
        return self._base

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        entity = self._base.get_entity(entity_id)
        if entity is not None and entity_id in self._overrides:
            return replace(entity, embedding=self._overrides[entity_id])
        return entity

    def get_embedding(self, entity_id: str) -> Optional[Vector]:
        if entity_id in self._overrides:
            return self._overrides[entity_id]
        return self._base.get_embedding(entity_id)

    def list_entities_by_type(self, entity_type: EntityType) -> List[Entity]:
        return [
            self.get_entity(e.entity_id)
            for e in self._base.list_entities_by_type(entity_type)
        ]

    def list_knowledge(self, knowledge_filter: Optional[KnowledgeFilter] = None) -> List[KnowledgeRecord]:
        records = self._base.list_knowledge(knowledge_filter)
        extra = [
            r for r in self._extra_knowledge
            if knowledge_filter is None or knowledge_filter.matches(r)
        ]
        return records + extra

    def list_relationships(
        self,
        relationship_filter: Optional[RelationshipFilter] = None
    ) -> List[Relationship]:
        return self._base.list_relationships(relationship_filter)

    def list_perceptions(self, perception_filter: Optional[PerceptionFilter] = None) -> List[Perception]:
        return self._base.list_perceptions(perception_filter)

    def list_scenes_by_participants(self, entity_ids: Sequence[str]) -> List[Scene]:
        return self._base.list_scenes_by_participants(entity_ids)

    def get_scene(self, scene_id: str) -> Optional[Scene]:
        return self._base.get_scene(scene_id)

    def list_facts(self, fact_filter: Optional[FactFilter] = None) -> List[UniverseFact]:
        return self._base.list_facts(fact_filter)
