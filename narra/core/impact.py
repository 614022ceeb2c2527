"""
Impact Analyzer
===============

Scores which entities a proposed change would touch.

Walks the reference graph outward from the changed entity up to a depth
limit. Severity falls with distance; protected entities are always
critical.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Collection, List, Optional, Tuple

from ..contracts.base import InvalidParameter, NotFound
from ..contracts.world import EntityType
from ..repository import WorldRepository
from .references import build_reference_graph, paths_from


class ImpactSeverity(Enum):
    """Ordered LOW < MEDIUM < HIGH < CRITICAL."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return ("low", "medium", "high", "critical").index(self.value)


class Directness(Enum):
    DIRECT = "direct"
    TRANSITIVE = "transitive"


@dataclass
class ImpactConfig:
    """Configuration for impact analysis."""
    max_depth: int = 3
    max_depth_ceiling: int = 10


@dataclass(frozen=True)
class AffectedEntity:
    entity_id: str
    entity_type: Optional[EntityType]
    distance: int
    directness: Directness
    severity: ImpactSeverity
    via: str
    is_protected: bool = False


@dataclass(frozen=True)
class ImpactReport:
    entity_id: str
    description: str
    max_depth: int
    affected: Tuple[AffectedEntity, ...]
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def has_protected_impact(self) -> bool:
        return any(a.is_protected for a in self.affected) or any(
            "protected" in w for w in self.warnings
        )

    @property
    def direct(self) -> Tuple[AffectedEntity, ...]:
        return tuple(a for a in self.affected if a.directness is Directness.DIRECT)

    @property
    def highest_severity(self) -> Optional[ImpactSeverity]:
        if not self.affected:
            return None
        return max((a.severity for a in self.affected), key=lambda s: s.rank)


def severity_for_distance(distance: int, is_protected: bool) -> ImpactSeverity:
    if is_protected or distance == 0:
        return ImpactSeverity.CRITICAL
    if distance == 1:
        return ImpactSeverity.HIGH
    if distance == 2:
        return ImpactSeverity.MEDIUM
    return ImpactSeverity.LOW


class ImpactAnalyzer:
    """Reference-graph walk for change impact."""

    def __init__(self, repository: WorldRepository, config: Optional[ImpactConfig] = None):
        self._repository = repository
        self._config = config or ImpactConfig()

    def analyze(
        self,
        entity_id: str,
        description: str = "",
        max_depth: Optional[int] = None,
        protected: Collection[str] = ()
    ) -> ImpactReport:
        depth = self._config.max_depth if max_depth is None else max_depth
        if depth < 0 or depth > self._config.max_depth_ceiling:
            raise InvalidParameter(
                f"max_depth must be within 0-{self._config.max_depth_ceiling}, got {depth}",
                entity_id=entity_id,
                operation="analyze_impact"
            )
        if self._repository.get_entity(entity_id) is None:
            raise NotFound("Entity not found", entity_id=entity_id, operation="analyze_impact")

        protected_ids = set(protected)
        graph = build_reference_graph(self._repository)
        paths = paths_from(graph, entity_id, depth)

        affected: List[AffectedEntity] = []
        for node, path in paths.items():
            distance = len(path) - 1
            entity = self._repository.get_entity(node)
            is_protected = node in protected_ids
            affected.append(AffectedEntity(
                entity_id=node,
                entity_type=entity.entity_type if entity else None,
                distance=distance,
                directness=Directness.DIRECT if distance == 1 else Directness.TRANSITIVE,
                severity=severity_for_distance(distance, is_protected),
                via=graph[path[-2]][path[-1]]['via'],
                is_protected=is_protected
            ))

        affected.sort(key=lambda a: (-a.severity.rank, a.distance, a.entity_id))

        warnings = []
        if entity_id in protected_ids:
            warnings.append(f"{entity_id} is protected and is itself being changed")
        for item in affected:
            if item.is_protected:
                warnings.append(
                    f"Change reaches protected {item.entity_id} at distance {item.distance}"
                )

        return ImpactReport(
            entity_id=entity_id,
            description=description,
            max_depth=depth,
            affected=tuple(affected),
            warnings=tuple(warnings)
        )

