"""
Shared test builders.

Fixed UTC instants and small factories for world records, so tests read
as the scenario they describe.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from narra.contracts.world import (
    Certainty, Entity, EntityType, KnowledgeRecord, LearningMethod,
    Perception, Relationship, RelationshipType, Scene
)
from narra.repository import InMemoryWorldRepository


EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def at(step: int) -> datetime:
    """EPOCH plus ``step`` hours."""
    return EPOCH + timedelta(hours=step)


def character(key: str, embedding: Optional[Sequence[float]] = None, **kwargs) -> Entity:
    return Entity(
        entity_id=f"character:{key}",
        entity_type=EntityType.CHARACTER,
        name=key.title(),
        created_at=EPOCH,
        updated_at=EPOCH,
        embedding=embedding,
        **kwargs
    )


def entity(entity_id: str, entity_type: EntityType, embedding=None, **kwargs) -> Entity:
    return Entity(
        entity_id=entity_id,
        entity_type=entity_type,
        name=entity_id.split(":")[-1].title(),
        created_at=EPOCH,
        updated_at=EPOCH,
        embedding=embedding,
        **kwargs
    )


def event(key: str, sequence: int, occurs_at: datetime, **kwargs) -> Entity:
    return entity(f"event:{key}", EntityType.EVENT, sequence=sequence, occurs_at=occurs_at, **kwargs)


_record_counter = [0]


def knowledge(
    holder_id: str,
    target_id: str,
    fact: str,
    certainty: Certainty,
    learned_at: datetime,
    method: LearningMethod = LearningMethod.TOLD,
    **kwargs
) -> KnowledgeRecord:
    _record_counter[0] += 1
    return KnowledgeRecord(
        record_id=f"k{_record_counter[0]}",
        holder_id=holder_id,
        target_id=target_id,
        fact=fact,
        certainty=certainty,
        method=method,
        learned_at=learned_at,
        **kwargs
    )


def perception(observer_id: str, target_id: str, embedding=None, recorded_at=EPOCH, **kwargs) -> Perception:
    return Perception(
        observer_id=observer_id,
        target_id=target_id,
        perception=f"{observer_id} on {target_id}",
        recorded_at=recorded_at,
        embedding=embedding,
        **kwargs
    )


def relationship(a: str, b: str, rel_type: RelationshipType, **kwargs) -> Relationship:
    return Relationship(from_id=a, to_id=b, rel_type=rel_type, **kwargs)


def scene(key: str, occurred_at: datetime, participants: Sequence[str], **kwargs) -> Scene:
    return Scene(scene_id=f"scene:{key}", occurred_at=occurred_at, participants=tuple(participants), **kwargs)


def world(*entities: Entity) -> InMemoryWorldRepository:
    repository = InMemoryWorldRepository()
    repository.add_entities(entities)
    return repository
