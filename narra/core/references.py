"""
Reference Graph
===============

Undirected networkx graph of everything that points at everything else:
relationships, perceptions, knowledge provenance, scene participation and
explicit entity references. Shared by impact analysis and contradiction
investigation.
"""

from __future__ import annotations
from typing import Dict, List
import networkx as nx

from ..contracts.world import EntityType
from ..repository import WorldRepository


def build_reference_graph(repository: WorldRepository) -> nx.Graph:
    """
    Build the reference graph for the current world view.

    Each edge carries ``via`` naming the first link kind that joined the
    pair.
    """
    graph = nx.Graph()

    def link(a: str, b: str, via: str):
        if a == b:
            return
        if not graph.has_edge(a, b):
            graph.add_edge(a, b, via=via)

    scene_ids: List[str] = []
    for entity_type in EntityType:
        for entity in repository.list_entities_by_type(entity_type):
            graph.add_node(entity.entity_id, entity_type=entity.entity_type)
            for referenced in entity.references:
                link(entity.entity_id, referenced, "reference")
            if entity_type == EntityType.SCENE:
                scene_ids.append(entity.entity_id)

    for relationship in repository.list_relationships():
        link(relationship.from_id, relationship.to_id, "relationship")

    for perception in repository.list_perceptions():
        link(perception.observer_id, perception.target_id, "perception")

    for record in repository.list_knowledge():
        link(record.holder_id, record.target_id, "knowledge")
        if record.source_character_id:
            link(record.holder_id, record.source_character_id, "knowledge_source")
        if record.event_id:
            link(record.holder_id, record.event_id, "knowledge_event")

    for scene_id in scene_ids:
        scene = repository.get_scene(scene_id)
        if scene is None:
            continue
        for participant in scene.participants:
            link(scene_id, participant, "scene_participation")
        if scene.event_id:
            link(scene_id, scene.event_id, "scene_event")
        if scene.location_id:
            link(scene_id, scene.location_id, "scene_location")

    return graph


def paths_from(graph: nx.Graph, entity_id: str, max_depth: int) -> Dict[str, List[str]]:
    """Shortest path to every entity within ``max_depth`` hops (excluding the origin)."""
    if entity_id not in graph:
        return {}
    paths = nx.single_source_shortest_path(graph, entity_id, cutoff=max_depth)
    return {node: path for node, path in paths.items() if node != entity_id}
