"""
In-Memory World Repository

Reference implementation of every reader interface.

Knowledge and perception ledgers are append-only: records live in one
ordered arena list and per-key indexes hold arena positions. Entities,
relationships, scenes and facts are plain registries.
"""

from __future__ import annotations
from typing import Dict, Iterable, List, Optional, Sequence

from ..contracts.world import (
    Entity, EntityType, KnowledgeRecord, Relationship, Perception, Scene,
    UniverseFact, Vector
)
from . import (
    WorldRepository, KnowledgeFilter, RelationshipFilter, PerceptionFilter, FactFilter
)


class InMemoryWorldRepository(WorldRepository):
    """
    In-memory world.

    Suitable for testing and for callers that already hold the whole world.
    """

    def __init__(self):
        self._entities: Dict[str, Entity] = {}

        # Append-only knowledge arena and index (holder_id -> positions)
        self._knowledge: List[KnowledgeRecord] = []
        self._knowledge_by_holder: Dict[str, List[int]] = {}

        # Append-only perception arena and index ((observer, target) -> positions)
        self._perceptions: List[Perception] = []
        self._perceptions_by_pair: Dict[tuple, List[int]] = {}

        self._relationships: List[Relationship] = []
        self._scenes: Dict[str, Scene] = {}
        self._facts: Dict[str, UniverseFact] = {}

    # =========================================================================
    # WRITES (caller-owned)
    # =========================================================================

    def add_entity(self, entity: Entity) -> None:
        """Register an entity, replacing any earlier version with the same id."""
        self._entities[entity.entity_id] = entity

    def add_entities(self, entities: Iterable[Entity]) -> None:
        for entity in entities:
            self.add_entity(entity)

    def append_knowledge(self, record: KnowledgeRecord) -> int:
        """Append a knowledge record; returns its ledger position."""
        position = len(self._knowledge)
        self._knowledge.append(record)
        self._knowledge_by_holder.setdefault(record.holder_id, []).append(position)
        return position

    def append_perception(self, perception: Perception) -> int:
        """Append a perception record; returns its ledger position."""
        position = len(self._perceptions)
        self._perceptions.append(perception)
        key = (perception.observer_id, perception.target_id)
        self._perceptions_by_pair.setdefault(key, []).append(position)
        return position

    def add_relationship(self, relationship: Relationship) -> None:
        self._relationships.append(relationship)

    def add_scene(self, scene: Scene) -> None:
        self._scenes[scene.scene_id] = scene

    def add_fact(self, fact: UniverseFact) -> None:
        self._facts[fact.fact_id] = fact

    # =========================================================================
    # ENTITY READER
    # =========================================================================

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        return self._entities.get(entity_id)

    def get_embedding(self, entity_id: str) -> Optional[Vector]:
        entity = self._entities.get(entity_id)
        return entity.embedding if entity else None

    def list_entities_by_type(self, entity_type: EntityType) -> List[Entity]:
        matches = [e for e in self._entities.values() if e.entity_type == entity_type]
        return sorted(matches, key=lambda e: e.entity_id)

    # =========================================================================
    # LEDGER READERS
    # =========================================================================

    def list_knowledge(self, knowledge_filter: Optional[KnowledgeFilter] = None) -> List[KnowledgeRecord]:
        if knowledge_filter is None:
            return list(self._knowledge)

        if knowledge_filter.holder_id is not None:
            positions = self._knowledge_by_holder.get(knowledge_filter.holder_id, [])
            candidates = [self._knowledge[p] for p in positions]
        else:
            candidates = self._knowledge

        return [r for r in candidates if knowledge_filter.matches(r)]

    def list_perceptions(self, perception_filter: Optional[PerceptionFilter] = None) -> List[Perception]:
        if perception_filter is None:
            return list(self._perceptions)

        if perception_filter.observer_id is not None and perception_filter.target_id is not None:
            key = (perception_filter.observer_id, perception_filter.target_id)
            return [self._perceptions[p] for p in self._perceptions_by_pair.get(key, [])]

        return [p for p in self._perceptions if perception_filter.matches(p)]

    def list_relationships(
        self,
        relationship_filter: Optional[RelationshipFilter] = None
    ) -> List[Relationship]:
        if relationship_filter is None:
            return list(self._relationships)
        return [r for r in self._relationships if relationship_filter.matches(r)]

    # =========================================================================
    # SCENES AND FACTS
    # =========================================================================

    def list_scenes_by_participants(self, entity_ids: Sequence[str]) -> List[Scene]:
        scenes = [s for s in self._scenes.values() if s.includes_all(entity_ids)]
        return sorted(scenes, key=lambda s: (s.occurred_at, s.scene_id))

    def get_scene(self, scene_id: str) -> Optional[Scene]:
        return self._scenes.get(scene_id)

    def list_facts(self, fact_filter: Optional[FactFilter] = None) -> List[UniverseFact]:
        facts = sorted(self._facts.values(), key=lambda f: f.fact_id)
        if fact_filter is None:
            return facts
        return [f for f in facts if fact_filter.matches(f)]
