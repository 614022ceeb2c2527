"""
Perception Analyzer
===================

Measures how accurately observers see a target.

A gap is the cosine distance between an observer's perception embedding
and the target's reference embedding. Perception history is never
overwritten, so shift() can replay accuracy over time against the
target's arc snapshots.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from ..contracts.base import MissingEmbedding, MissingPerception, NotFound, name_from_id
from ..contracts.world import Perception, Vector
from ..repository import NEIGHBOR_TYPES, EntityReader, PerceptionReader, PerceptionFilter, embedded_entities
from .arc import ArcTracker
from . import vector_math


@dataclass
class PerceptionConfig:
    """Configuration for perception analysis."""
    # Gap assessment upper bounds
    accurate_threshold: float = 0.05
    fair_threshold: float = 0.15
    blind_spot_threshold: float = 0.30
    distorted_threshold: float = 0.50

    # First/last gap difference within +/- band counts as stable
    trajectory_band: float = 0.02


@dataclass(frozen=True)
class PerceptionGap:
    """Distance between one observer's view and the target's reality."""
    observer_id: str
    target_id: str
    gap: float
    assessment: str
    perception: str
    recorded_at: datetime
    feelings: Optional[str] = None
    tension_level: Optional[int] = None

    @property
    def accuracy(self) -> float:
        return 1.0 - self.gap


@dataclass(frozen=True)
class MisperceptionReport:
    """
    What an observer gets wrong about a target.

    ``vector`` points from reality to the observer's view; ``neighbors``
    are the entities that direction most resembles.
    """
    observer_id: str
    target_id: str
    vector: Vector
    gap: float
    assessment: str
    neighbors: Tuple[vector_math.Neighbor, ...] = ()


@dataclass(frozen=True)
class ObserverRow:
    """One observer's line in a perception matrix."""
    observer_id: str
    observer_name: str
    perception: str
    gap: Optional[float]
    agrees_with: Optional[Tuple[str, float]] = None
    disagrees_with: Optional[Tuple[str, float]] = None


@dataclass(frozen=True)
class PerceptionMatrix:
    """
    Pairwise observer agreement about one target.

    ``agreements`` is keyed by unordered observer pairs; self pairs are
    never present.
    """
    target_id: str
    agreements: Dict[FrozenSet[str], float]
    rows: Tuple[ObserverRow, ...]
    missing_observers: Tuple[str, ...] = field(default_factory=tuple)
    target_has_embedding: bool = False

    def agreement(self, observer_a: str, observer_b: str) -> Optional[float]:
        return self.agreements.get(frozenset((observer_a, observer_b)))


@dataclass(frozen=True)
class ShiftPoint:
    """Gap at one historical perception record."""
    recorded_at: datetime
    gap: float
    reference: str  # "snapshot" or "current"


@dataclass(frozen=True)
class PerceptionShift:
    """How an observer's accuracy evolved."""
    observer_id: str
    target_id: str
    points: Tuple[ShiftPoint, ...]
    trajectory: str
    skipped_without_embedding: int = 0

    @property
    def gap_change(self) -> float:
        if len(self.points) < 2:
            return 0.0
        return self.points[-1].gap - self.points[0].gap


class PerceptionReaderSource(EntityReader, PerceptionReader):
    """Reader surface required by the analyzer."""


class PerceptionAnalyzer:
    """
    Computes gap, matrix and shift metrics.

    ``arc_tracker`` is optional; without it shift() compares every record
    against the target's current embedding.
    """

    def __init__(
        self,
        repository: PerceptionReaderSource,
        arc_tracker: Optional[ArcTracker] = None,
        config: Optional[PerceptionConfig] = None
    ):
        self._repository = repository
        self._arc_tracker = arc_tracker
        self._config = config or PerceptionConfig()

    # =========================================================================
    # GAP
    # =========================================================================

    def gap(self, observer_id: str, target_id: str) -> PerceptionGap:
        latest = self._latest_perception(observer_id, target_id)
        if latest.embedding is None:
            raise MissingEmbedding(
                f"Latest perception by {observer_id} has no embedding",
                entity_id=target_id,
                operation="perception_gap"
            )

        reality = self._target_embedding(target_id, "perception_gap")
        distance = vector_math.cosine_distance(latest.embedding, reality)

        return PerceptionGap(
            observer_id=observer_id,
            target_id=target_id,
            gap=distance,
            assessment=self.assess(distance),
            perception=latest.perception,
            recorded_at=latest.recorded_at,
            feelings=latest.feelings,
            tension_level=latest.tension_level
        )

    def assess(self, gap: float) -> str:
        if gap < self._config.accurate_threshold:
            return "remarkably accurate"
        if gap < self._config.fair_threshold:
            return "fairly accurate"
        if gap < self._config.blind_spot_threshold:
            return "notable blind spots"
        if gap < self._config.distorted_threshold:
            return "significantly distorted"
        return "dramatically wrong"

    def misperception_vector(self, observer_id: str, target_id: str, limit: int = 5) -> MisperceptionReport:
        """Perception minus reality, with the entities best aligned with the difference."""
        latest = self._latest_perception(observer_id, target_id)
        if latest.embedding is None:
            raise MissingEmbedding(
                f"Latest perception by {observer_id} has no embedding",
                entity_id=target_id,
                operation="misperception_vector"
            )
        reality = self._target_embedding(target_id, "misperception_vector")
        direction = vector_math.subtract(latest.embedding, reality)
        gap = vector_math.cosine_distance(latest.embedding, reality)
        candidates = embedded_entities(self._repository, NEIGHBOR_TYPES, exclude={observer_id, target_id})

        return MisperceptionReport(
            observer_id=observer_id,
            target_id=target_id,
            vector=direction,
            gap=gap,
            assessment=self.assess(gap),
            neighbors=tuple(vector_math.aligned(direction, candidates, limit))
        )

    # =========================================================================
    # MATRIX
    # =========================================================================

    def matrix(self, target_id: str, observer_ids: Optional[Sequence[str]] = None) -> PerceptionMatrix:
        """
        Pairwise agreement (1 - cosine distance) between observers' latest
        perceptions of the target.

        Observers default to everyone with a perception of the target.
        Requested observers without an embedded perception are listed in
        ``missing_observers``.
        """
        if self._repository.get_entity(target_id) is None:
            raise NotFound("Target entity not found", entity_id=target_id, operation="perception_matrix")

        latest_by_observer = self._latest_by_observer(target_id)
        if observer_ids is None:
            observers = sorted(latest_by_observer)
        else:
            observers = sorted(set(observer_ids))

        embedded: Dict[str, Perception] = {}
        missing: List[str] = []
        for observer_id in observers:
            perception = latest_by_observer.get(observer_id)
            if perception is None or perception.embedding is None:
                missing.append(observer_id)
            else:
                embedded[observer_id] = perception

        agreements: Dict[FrozenSet[str], float] = {}
        ordered = sorted(embedded)
        for i, observer_a in enumerate(ordered):
            for observer_b in ordered[i + 1:]:
                agreements[frozenset((observer_a, observer_b))] = 1.0 - vector_math.cosine_distance(
                    embedded[observer_a].embedding, embedded[observer_b].embedding
                )

        reality = self._repository.get_embedding(target_id)
        rows = []
        for observer_id in ordered:
            perception = embedded[observer_id]
            others = [
                (other, agreements[frozenset((observer_id, other))])
                for other in ordered if other != observer_id
            ]
            agrees_with = min(others, key=lambda o: (-o[1], o[0])) if others else None
            disagrees_with = min(others, key=lambda o: (o[1], o[0])) if others else None

            rows.append(ObserverRow(
                observer_id=observer_id,
                observer_name=self._display_name(observer_id),
                perception=perception.perception,
                gap=(
                    vector_math.cosine_distance(perception.embedding, reality)
                    if reality is not None else None
                ),
                agrees_with=agrees_with,
                disagrees_with=disagrees_with
            ))

        # Most accurate observers first; unknown gaps last
        rows.sort(key=lambda r: (r.gap is None, r.gap if r.gap is not None else 0.0, r.observer_id))

        return PerceptionMatrix(
            target_id=target_id,
            agreements=agreements,
            rows=tuple(rows),
            missing_observers=tuple(missing),
            target_has_embedding=reality is not None
        )

    # =========================================================================
    # SHIFT
    # =========================================================================

    def shift(self, observer_id: str, target_id: str) -> PerceptionShift:
        """
        Gap of every historical perception against the target as it was
        at that time (nearest prior arc snapshot, else current embedding).
        """
        history = self._history(observer_id, target_id)
        if not history:
            raise MissingPerception(
                f"{observer_id} has no perception of the target",
                entity_id=target_id,
                operation="perception_shift"
            )

        current = self._repository.get_embedding(target_id)
        points: List[ShiftPoint] = []
        skipped = 0

        for record in history:
            if record.embedding is None:
                skipped += 1
                continue

            snapshot = (
                self._arc_tracker.snapshot_at(target_id, record.recorded_at)
                if self._arc_tracker is not None else None
            )
            if snapshot is not None:
                reference, source = snapshot.embedding, "snapshot"
            elif current is not None:
                reference, source = current, "current"
            else:
                raise MissingEmbedding(
                    "Target has neither a prior snapshot nor a current embedding",
                    entity_id=target_id,
                    operation="perception_shift"
                )

            points.append(ShiftPoint(
                recorded_at=record.recorded_at,
                gap=vector_math.cosine_distance(record.embedding, reference),
                reference=source
            ))

        if not points:
            raise MissingEmbedding(
                f"No perception by {observer_id} has an embedding",
                entity_id=target_id,
                operation="perception_shift"
            )

        return PerceptionShift(
            observer_id=observer_id,
            target_id=target_id,
            points=tuple(points),
            trajectory=self._trajectory(points),
            skipped_without_embedding=skipped
        )

    def _trajectory(self, points: Sequence[ShiftPoint]) -> str:
        if len(points) < 2:
            return "stable"
        change = points[-1].gap - points[0].gap
        if change < -self._config.trajectory_band:
            return "converging"
        if change > self._config.trajectory_band:
            return "diverging"
        return "stable"

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _history(self, observer_id: str, target_id: str) -> List[Perception]:
        records = self._repository.list_perceptions(
            PerceptionFilter(observer_id=observer_id, target_id=target_id)
        )
        # Stable sort keeps ledger order for records at the same instant
        return sorted(records, key=lambda p: p.recorded_at)

    def _latest_perception(self, observer_id: str, target_id: str) -> Perception:
        history = self._history(observer_id, target_id)
        if not history:
            raise MissingPerception(
                f"{observer_id} has no perception of the target",
                entity_id=target_id,
                operation="perception_gap"
            )
        return history[-1]

    def _latest_by_observer(self, target_id: str) -> Dict[str, Perception]:
        latest: Dict[str, Perception] = {}
        records = self._repository.list_perceptions(PerceptionFilter(target_id=target_id))
        for record in sorted(records, key=lambda p: p.recorded_at):
            latest[record.observer_id] = record
        return latest

    def _target_embedding(self, target_id: str, operation: str) -> Vector:
        if self._repository.get_entity(target_id) is None:
            raise NotFound("Target entity not found", entity_id=target_id, operation=operation)
        embedding = self._repository.get_embedding(target_id)
        if embedding is None:
            raise MissingEmbedding("Target has no embedding", entity_id=target_id, operation=operation)
        return embedding

    def _display_name(self, entity_id: str) -> str:
        entity = self._repository.get_entity(entity_id)
        return entity.name if entity is not None else name_from_id(entity_id)

