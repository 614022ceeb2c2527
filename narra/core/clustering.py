"""
Thematic Clusterer
==================

K-means over entity embeddings to surface implicit themes.

Results must be reproducible: entities are ordered by id before
clustering and seeding is deterministic (farthest-point by default, or a
fixed-seed random draw). Lloyd iterations stop when no centroid moves more
than the tolerance or the iteration ceiling is reached.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
import numpy as np

from ..contracts.base import DimensionMismatch, InsufficientEntities, InvalidParameter
from ..contracts.world import Entity, EntityType, Vector
from ..repository import EntityReader
from .vector_math import to_vector


SEEDING_FARTHEST_POINT = "farthest_point"
SEEDING_RANDOM = "random"


@dataclass
class ClusteringConfig:
    """Configuration for thematic clustering."""
    max_iterations: int = 300
    tolerance: float = 1e-4
    seeding: str = SEEDING_FARTHEST_POINT
    random_seed: int = 0
    label_size: int = 3

    def __post_init__(self):
        if self.seeding not in (SEEDING_FARTHEST_POINT, SEEDING_RANDOM):
            raise ValueError(f"Unknown seeding scheme '{self.seeding}'")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")


@dataclass(frozen=True)
class ClusterMember:
    entity_id: str
    entity_type: EntityType
    name: str
    centrality: float  # 1 / (1 + distance to centroid)


@dataclass(frozen=True)
class ThemeCluster:
    cluster_id: int
    label: str
    centroid: Vector
    members: Tuple[ClusterMember, ...]

    @property
    def size(self) -> int:
        return len(self.members)

    def count_of(self, entity_type: EntityType) -> int:
        return sum(1 for m in self.members if m.entity_type == entity_type)


@dataclass(frozen=True)
class ClusteringReport:
    k: int
    entity_types: Tuple[EntityType, ...]
    clusters: Tuple[ThemeCluster, ...]
    total_entities: int
    entities_without_embeddings: Tuple[str, ...]
    iterations: int
    converged: bool

    def assignments(self) -> Dict[str, int]:
        return {
            member.entity_id: cluster.cluster_id
            for cluster in self.clusters
            for member in cluster.members
        }


@dataclass(frozen=True)
class CoverageExpectation:
    """
    "Every cluster with at least ``trigger_min`` entities of
    ``trigger_type`` should include at least ``required_min`` of
    ``required_type``."
    """
    trigger_type: EntityType
    trigger_min: int
    required_type: EntityType
    required_min: int = 1

    def __post_init__(self):
        if self.trigger_min < 0 or self.required_min < 1:
            raise ValueError("trigger_min must be >= 0 and required_min >= 1")


@dataclass(frozen=True)
class CoverageShortfall:
    expectation: CoverageExpectation
    present: int
    missing: int


@dataclass(frozen=True)
class ThematicGap:
    """A cluster failing one or more coverage expectations."""
    cluster_id: int
    label: str
    shortfalls: Tuple[CoverageShortfall, ...] = field(default_factory=tuple)

    @property
    def min_missing(self) -> int:
        return min(s.missing for s in self.shortfalls)


class ThematicClusterer:
    """Deterministic k-means over repository embeddings."""

    def __init__(self, repository: EntityReader, config: Optional[ClusteringConfig] = None):
        self._repository = repository
        self._config = config or ClusteringConfig()

    def cluster(self, entity_types: Sequence[EntityType], k: int) -> ClusteringReport:
        if k < 1:
            raise InvalidParameter(f"k must be at least 1, got {k}", operation="cluster")

        scope = tuple(dict.fromkeys(entity_types))
        entities: List[Entity] = []
        for entity_type in scope:
            entities.extend(self._repository.list_entities_by_type(entity_type))
        entities.sort(key=lambda e: e.entity_id)

        embedded = [e for e in entities if e.embedding is not None]
        without = tuple(e.entity_id for e in entities if e.embedding is None)

        if len(embedded) < k:
            raise InsufficientEntities(
                f"Need at least {k} entities with embeddings, found {len(embedded)}",
                operation="cluster"
            )

        dimension = len(embedded[0].embedding)
        for entity in embedded:
            if len(entity.embedding) != dimension:
                raise DimensionMismatch(
                    f"Embedding dimension {len(entity.embedding)} differs from {dimension}",
                    entity_id=entity.entity_id,
                    operation="cluster"
                )

        points = np.array([e.embedding for e in embedded], dtype=np.float64)
        centroids = self._seed(points, k)
        labels, centroids, iterations, converged = self._lloyd(points, centroids)

        clusters = []
        for index in range(k):
            member_rows = np.flatnonzero(labels == index)
            if member_rows.size == 0:
                continue
            members = [
                ClusterMember(
                    entity_id=embedded[row].entity_id,
                    entity_type=embedded[row].entity_type,
                    name=embedded[row].name,
                    centrality=1.0 / (1.0 + float(np.linalg.norm(points[row] - centroids[index])))
                )
                for row in member_rows
            ]
            members.sort(key=lambda m: (-m.centrality, m.entity_id))
            clusters.append((index, members))

        clusters.sort(key=lambda c: (-len(c[1]), c[0]))

        return ClusteringReport(
            k=k,
            entity_types=scope,
            clusters=tuple(
                ThemeCluster(
                    cluster_id=position,
                    label=", ".join(m.name for m in members[:self._config.label_size]),
                    centroid=to_vector(centroids[index]),
                    members=tuple(members)
                )
                for position, (index, members) in enumerate(clusters)
            ),
            total_entities=len(embedded),
            entities_without_embeddings=without,
            iterations=iterations,
            converged=converged
        )

    def _seed(self, points: np.ndarray, k: int) -> np.ndarray:
        if self._config.seeding == SEEDING_RANDOM:
            rng = np.random.default_rng(self._config.random_seed)
            chosen = sorted(rng.choice(len(points), size=k, replace=False).tolist())
            return points[chosen].copy()

        # Farthest-point: start nearest the global mean, then repeatedly
        # take the point farthest from every chosen centroid.
        mean = points.mean(axis=0)
        chosen = [int(np.argmin(np.linalg.norm(points - mean, axis=1)))]
        nearest = np.linalg.norm(points - points[chosen[0]], axis=1)
        while len(chosen) < k:
            nearest[chosen] = -1.0
            candidate = int(np.argmax(nearest))
            chosen.append(candidate)
            nearest = np.minimum(nearest, np.linalg.norm(points - points[candidate], axis=1))
        return points[chosen].copy()

    def _lloyd(self, points: np.ndarray, centroids: np.ndarray):
        labels = np.zeros(len(points), dtype=int)
        iterations = 0
        converged = False

        for iterations in range(1, self._config.max_iterations + 1):
            distances = np.linalg.norm(points[:, None, :] - centroids[None, :, :], axis=2)
            labels = np.argmin(distances, axis=1)

            updated = centroids.copy()
            for index in range(len(centroids)):
                members = points[labels == index]
                if len(members):
                    updated[index] = members.mean(axis=0)

            movement = float(np.max(np.linalg.norm(updated - centroids, axis=1)))
            centroids = updated
            if movement <= self._config.tolerance:
                converged = True
                break

        # Final assignment against the settled centroids
        distances = np.linalg.norm(points[:, None, :] - centroids[None, :, :], axis=2)
        labels = np.argmin(distances, axis=1)
        return labels, centroids, iterations, converged

    @staticmethod
    def thematic_gaps(
        report: ClusteringReport,
        expectations: Sequence[CoverageExpectation]
    ) -> List[ThematicGap]:
        """Clusters that trigger an expectation but lack the required type."""
        gaps = []
        for cluster in report.clusters:
            shortfalls = []
            for expectation in expectations:
                if cluster.count_of(expectation.trigger_type) < expectation.trigger_min:
                    continue
                present = cluster.count_of(expectation.required_type)
                if present < expectation.required_min:
                    shortfalls.append(CoverageShortfall(
                        expectation=expectation,
                        present=present,
                        missing=expectation.required_min - present
                    ))
            if shortfalls:
                gaps.append(ThematicGap(
                    cluster_id=cluster.cluster_id,
                    label=cluster.label,
                    shortfalls=tuple(shortfalls)
                ))
        return gaps
