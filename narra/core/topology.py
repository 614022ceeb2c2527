"""
Character Network
=================

Structural analysis of the relationship graph.

Builds an undirected networkx graph of characters joined by relationships
and perceptions, then reports centrality and a coarse narrative role per
character alongside whole-graph metrics.

Centrality summaries over the full world are expensive; callers that
need them repeatedly cache the report and invalidate on writes.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Set, Tuple
import networkx as nx

from ..contracts.world import EntityType
from ..repository import EntityReader, PerceptionReader, RelationshipReader


class NarrativeRole(Enum):
    HUB = "hub"
    BRIDGE = "bridge"
    PERIPHERAL = "peripheral"
    ISOLATED = "isolated"
    CONNECTED = "connected"


@dataclass(frozen=True)
class GraphMetrics:
    """Immutable structural metrics for the character graph."""
    node_count: int
    edge_count: int
    density: float
    is_connected: bool
    connected_components_count: int
    diameter: Optional[int] = None  # Only for connected graphs


@dataclass(frozen=True)
class CharacterCentrality:
    entity_id: str
    name: str
    degree: float
    betweenness: float
    closeness: float
    role: NarrativeRole


@dataclass(frozen=True)
class CentralityReport:
    characters: Tuple[CharacterCentrality, ...]
    metrics: GraphMetrics

    def role_of(self, entity_id: str) -> Optional[NarrativeRole]:
        for character in self.characters:
            if character.entity_id == entity_id:
                return character.role
        return None


def assign_role(degree: float, betweenness: float) -> NarrativeRole:
    if degree == 0.0:
        return NarrativeRole.ISOLATED
    if degree > 0.5:
        return NarrativeRole.HUB
    if betweenness > 0.3 and degree < 0.5:
        return NarrativeRole.BRIDGE
    if degree < 0.2 and betweenness < 0.1:
        return NarrativeRole.PERIPHERAL
    return NarrativeRole.CONNECTED


class NetworkSource(EntityReader, RelationshipReader, PerceptionReader):
    """Reader surface required by the network."""


class CharacterNetwork:
    """
    Wraps NetworkX for character-graph structure and centrality.

    Holds no graph between calls: every query builds one from the current
    world view, or uses the graph it is handed.
    """

    def __init__(self, repository: NetworkSource):
        self._repository = repository

    def build_graph(self) -> nx.Graph:
        """Characters joined by relationships and perceptions, as the world stands now."""
        graph = nx.Graph()

        for character in self._repository.list_entities_by_type(EntityType.CHARACTER):
            graph.add_node(character.entity_id, name=character.name)

        for relationship in self._repository.list_relationships():
            graph.add_edge(
                relationship.from_id,
                relationship.to_id,
                relation_type=relationship.rel_type.value
            )

        for perception in self._repository.list_perceptions():
            if not graph.has_edge(perception.observer_id, perception.target_id):
                graph.add_edge(perception.observer_id, perception.target_id, relation_type="perception")

        return graph

    def centrality(self) -> CentralityReport:
        """Degree, betweenness and closeness centrality with narrative roles."""
        graph = self.build_graph()
        if not graph:
            return CentralityReport(characters=(), metrics=self.compute_metrics(graph))

        degree = nx.degree_centrality(graph)
        betweenness = nx.betweenness_centrality(graph)
        closeness = nx.closeness_centrality(graph)

        characters = [
            CharacterCentrality(
                entity_id=node,
                name=graph.nodes[node].get('name', node),
                degree=degree[node],
                betweenness=betweenness[node],
                closeness=closeness[node],
                role=assign_role(degree[node], betweenness[node])
            )
            for node in graph.nodes
        ]
        characters.sort(key=lambda c: (-c.degree, -c.betweenness, c.entity_id))

        return CentralityReport(characters=tuple(characters), metrics=self.compute_metrics(graph))

    def get_connected_components(self, graph: Optional[nx.Graph] = None) -> List[Set[str]]:
        """Disjoint character groups, largest first."""
        graph = graph if graph is not None else self.build_graph()
        components = [set(c) for c in nx.connected_components(graph)]
        components.sort(key=lambda c: (-len(c), min(c)))
        return components

    def compute_metrics(self, graph: Optional[nx.Graph] = None) -> GraphMetrics:
        graph = graph if graph is not None else self.build_graph()
        if not graph:
            return GraphMetrics(0, 0, 0.0, False, 0, None)

        connected = nx.is_connected(graph)
        return GraphMetrics(
            node_count=graph.number_of_nodes(),
            edge_count=graph.number_of_edges(),
            density=nx.density(graph),
            is_connected=connected,
            connected_components_count=nx.number_connected_components(graph),
            diameter=nx.diameter(graph) if connected and len(graph) > 1 else None
        )

    def get_shortest_path(
        self,
        start_id: str,
        end_id: str,
        graph: Optional[nx.Graph] = None
    ) -> Optional[List[str]]:
        """Shortest chain of acquaintance between two characters."""
        graph = graph if graph is not None else self.build_graph()
        try:
            return nx.shortest_path(graph, source=start_id, target=end_id)
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return None
