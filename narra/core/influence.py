"""
Influence Propagator
====================

Diffusion of a fact through the relationship network.

Each hop multiplies the running likelihood by the edge's relationship
weight. A character reachable along several paths keeps the maximum
likelihood over those paths, never the sum. Traversal stops at the depth
limit or once likelihood falls below the threshold, so every call is
bounded.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
import networkx as nx

from ..contracts.base import InvalidParameter, NotFound
from ..contracts.world import EntityType, RelationshipType
from ..repository import (
    EntityReader, KnowledgeReader, PerceptionReader, RelationshipReader,
    KnowledgeFilter, PerceptionFilter
)
from .irony import latest_by_holder


def default_relationship_weights() -> Dict[RelationshipType, float]:
    return {
        RelationshipType.FAMILY: 0.9,
        RelationshipType.MENTORSHIP: 0.9,
        RelationshipType.ROMANTIC: 0.85,
        RelationshipType.PROFESSIONAL: 0.8,
        RelationshipType.SOCIAL: 0.7,
        RelationshipType.CUSTOM: 0.5,
        RelationshipType.ANTAGONISTIC: 0.3,
    }


@dataclass
class InfluenceConfig:
    """
    Configuration for influence propagation.

    Relationship weights are per-hop propagation likelihoods in (0, 1].
    """
    relationship_weights: Dict[RelationshipType, float] = field(
        default_factory=default_relationship_weights
    )
    default_weight: float = 0.5
    max_depth: int = 3
    max_depth_ceiling: int = 10
    min_likelihood: float = 0.05

    # Sender perceiving the receiver at or above this tension passes less on
    high_tension_threshold: int = 7
    high_tension_factor: float = 0.7

    max_results: int = 50

    def __post_init__(self):
        for rel_type, weight in self.relationship_weights.items():
            if not 0.0 < weight <= 1.0:
                raise ValueError(f"Weight for {rel_type.value} must be in (0, 1], got {weight}")
        if not 0.0 < self.default_weight <= 1.0:
            raise ValueError("default_weight must be in (0, 1]")
        if not 0.0 < self.high_tension_factor <= 1.0:
            raise ValueError("high_tension_factor must be in (0, 1]")

    def weight_for(self, rel_type: RelationshipType) -> float:
        return self.relationship_weights.get(rel_type, self.default_weight)


@dataclass(frozen=True)
class InfluenceReach:
    """A character the fact can reach and how likely it is to get there."""
    entity_id: str
    likelihood: float
    path: Tuple[str, ...]  # shortest hop path from the seed
    likelihood_path: Tuple[str, ...]  # path achieving the likelihood
    already_informed: bool = False

    @property
    def hops(self) -> int:
        return len(self.path) - 1

    @property
    def strength(self) -> str:
        if self.hops <= 1:
            return "direct"
        if self.hops == 2:
            return "likely"
        return "possible"


@dataclass(frozen=True)
class PropagationReport:
    seed_id: str
    fact_key: Optional[str]
    max_depth: int
    min_likelihood: float
    reached: Tuple[InfluenceReach, ...]
    unreachable: Tuple[str, ...]
    truncated: bool = False


class InfluenceSource(EntityReader, KnowledgeReader, PerceptionReader, RelationshipReader):
    """Reader surface required by the propagator."""


class InfluencePropagator:
    """
    Wraps a networkx DiGraph of characters weighted by relationship type.
    """

    def __init__(self, repository: InfluenceSource, config: Optional[InfluenceConfig] = None):
        self._repository = repository
        self._config = config or InfluenceConfig()

    def build_graph(self) -> nx.DiGraph:
        """
        Directed propagation graph.

        Undirected relationships contribute both directions. Parallel
        relationships keep the strongest weight.
        """
        graph = nx.DiGraph()
        for character in self._repository.list_entities_by_type(EntityType.CHARACTER):
            graph.add_node(character.entity_id)

        weights: Dict[Tuple[str, str], float] = {}
        for relationship in self._repository.list_relationships():
            weight = self._config.weight_for(relationship.rel_type)
            directions = [(relationship.from_id, relationship.to_id)]
            if not relationship.directed:
                directions.append((relationship.to_id, relationship.from_id))
            for edge in directions:
                weights[edge] = max(weights.get(edge, 0.0), weight)

        for (sender, receiver) in sorted(weights):
            graph.add_edge(
                sender,
                receiver,
                weight=weights[(sender, receiver)] * self._tension_factor(sender, receiver)
            )
        return graph

    def _tension_factor(self, sender: str, receiver: str) -> float:
        records = self._repository.list_perceptions(
            PerceptionFilter(observer_id=sender, target_id=receiver)
        )
        if not records:
            return 1.0
        latest = max(enumerate(records), key=lambda item: (item[1].recorded_at, item[0]))[1]
        if latest.tension_level is not None and latest.tension_level >= self._config.high_tension_threshold:
            return self._config.high_tension_factor
        return 1.0

    def propagate(
        self,
        seed_id: str,
        fact_key: Optional[str] = None,
        max_depth: Optional[int] = None,
        min_likelihood: Optional[float] = None
    ) -> PropagationReport:
        depth = self._config.max_depth if max_depth is None else max_depth
        threshold = self._config.min_likelihood if min_likelihood is None else min_likelihood

        if depth < 0 or depth > self._config.max_depth_ceiling:
            raise InvalidParameter(
                f"max_depth must be within 0-{self._config.max_depth_ceiling}, got {depth}",
                entity_id=seed_id,
                operation="propagate"
            )
        if not 0.0 < threshold <= 1.0:
            raise InvalidParameter(
                f"min_likelihood must be in (0, 1], got {threshold}",
                entity_id=seed_id,
                operation="propagate"
            )
        if self._repository.get_entity(seed_id) is None:
            raise NotFound("Seed character not found", entity_id=seed_id, operation="propagate")

        informed = set()
        if fact_key is not None:
            latest = latest_by_holder(self._repository.list_knowledge(KnowledgeFilter(fact_key=fact_key)))
            seed_record = latest.get(seed_id)
            if seed_record is None or seed_record.certainty.is_uninformed:
                raise NotFound(
                    f"Seed does not hold fact '{fact_key}'",
                    entity_id=seed_id,
                    operation="propagate"
                )
            informed = {h for h, r in latest.items() if r.certainty.is_informed}

        graph = self.build_graph()
        if seed_id not in graph:
            graph.add_node(seed_id)

        best = self._max_likelihood_paths(graph, seed_id, depth, threshold)
        shortest = nx.single_source_shortest_path(graph, seed_id, cutoff=depth)

        reached = [
            InfluenceReach(
                entity_id=node,
                likelihood=likelihood,
                path=tuple(shortest.get(node, path)),
                likelihood_path=path,
                already_informed=node in informed
            )
            for node, (likelihood, path) in best.items()
            if node != seed_id
        ]
        reached.sort(key=lambda r: (-r.likelihood, r.hops, r.entity_id))

        truncated = len(reached) > self._config.max_results
        reached_ids = {r.entity_id for r in reached}
        unreachable = sorted(
            node for node in graph.nodes
            if node != seed_id and node not in reached_ids
        )

        return PropagationReport(
            seed_id=seed_id,
            fact_key=fact_key,
            max_depth=depth,
            min_likelihood=threshold,
            reached=tuple(reached[:self._config.max_results]),
            unreachable=tuple(unreachable),
            truncated=truncated
        )

    @staticmethod
    def _max_likelihood_paths(
        graph: nx.DiGraph,
        seed_id: str,
        max_depth: int,
        threshold: float
    ) -> Dict[str, Tuple[float, Tuple[str, ...]]]:
        """
        Best likelihood per node over simple paths of at most max_depth hops.

        Level-by-level relaxation; weights never exceed 1 so revisiting a
        node can never improve a path.
        """
        best: Dict[str, Tuple[float, Tuple[str, ...]]] = {seed_id: (1.0, (seed_id,))}
        frontier = dict(best)

        for _ in range(max_depth):
            next_frontier: Dict[str, Tuple[float, Tuple[str, ...]]] = {}
            for node in sorted(frontier):
                likelihood, path = frontier[node]
                for neighbor in sorted(graph.successors(node)):
                    if neighbor in path:
                        continue
                    candidate = likelihood * graph[node][neighbor]['weight']
                    if candidate < threshold:
                        continue
                    current = next_frontier.get(neighbor)
                    if current is None or candidate > current[0]:
                        next_frontier[neighbor] = (candidate, path + (neighbor,))

            if not next_frontier:
                break

            for node, entry in next_frontier.items():
                if node not in best or entry[0] > best[node][0]:
                    best[node] = entry
            frontier = next_frontier

        return best
