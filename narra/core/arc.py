"""
Arc Tracker
===========

Per-entity embedding timelines.

Snapshots are appended to a single arena list; each entity keeps an ordered
index of arena positions. A snapshot is never edited or removed, and every
append must be strictly later than the entity's previous snapshot.
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union
import numpy as np

from ..contracts.base import (
    DimensionMismatch, InsufficientHistory, InvalidParameter, NoSnapshotBeforeEvent,
    NotFound, OutOfOrderSnapshot, TimeWindow, as_utc
)
from ..contracts.world import ArcSnapshot, Vector, as_vector
from . import vector_math


@dataclass
class ArcConfig:
    """Configuration for arc tracking."""
    # Inter-entity distance changes within +/- epsilon count as stable
    convergence_epsilon: float = 0.02

    # Upper bounds for drift assessment labels
    unchanged_threshold: float = 0.02
    minor_threshold: float = 0.1
    significant_threshold: float = 0.3

    # Trajectory similarity labels for compare()
    similar_trajectory: float = 0.5
    opposite_trajectory: float = -0.3


class ArcTrend(Enum):
    """Direction of the distance between two entities over a window."""
    CONVERGENT = "convergent"
    DIVERGENT = "divergent"
    STABLE = "stable"


@dataclass(frozen=True)
class DriftScore:
    """Cumulative drift for one entity."""
    entity_id: str
    drift: float
    snapshot_count: int
    insufficient_history: bool
    net_displacement: float
    assessment: str
    latest_at: Optional[datetime] = None


@dataclass(frozen=True)
class DistancePoint:
    """Distance between two entities at aligned snapshots."""
    a_recorded_at: datetime
    b_recorded_at: datetime
    distance: float


@dataclass(frozen=True)
class ArcComparison:
    """Result of comparing two entity arcs over a window."""
    entity_a: str
    entity_b: str
    window: str
    trend: ArcTrend
    distances: Tuple[DistancePoint, ...]
    distance_change: float
    insufficient_history: bool
    trajectory_similarity: Optional[float] = None
    trajectory_label: Optional[str] = None

    @property
    def initial_distance(self) -> float:
        return self.distances[0].distance

    @property
    def current_distance(self) -> float:
        return self.distances[-1].distance


@dataclass(frozen=True)
class GrowthReport:
    """
    Where an entity is heading: latest snapshot minus baseline.

    ``neighbors`` are the candidates best aligned with that direction.
    """
    entity_id: str
    vector: Vector
    snapshot_count: int
    net_drift: float
    neighbors: Tuple[vector_math.Neighbor, ...] = ()


class SnapshotHistory:
    """
    Lazy, restartable view over one entity's snapshots.

    The view is bounded at creation: later appends are not visible to it.
    """

    def __init__(self, arena: List[ArcSnapshot], positions: Sequence[int]):
        self._arena = arena
        self._positions = tuple(positions)

    def __iter__(self) -> Iterator[ArcSnapshot]:
        for position in self._positions:
            yield self._arena[position]

    def __len__(self) -> int:
        return len(self._positions)

    def __bool__(self) -> bool:
        return bool(self._positions)


Window = Union[str, TimeWindow, None]


def parse_recent_window(window: str) -> int:
    """Parse ``recent:N`` into N."""
    prefix, _, count = window.partition(":")
    if prefix != "recent" or not count.isdigit() or int(count) < 1:
        raise InvalidParameter(
            f"Invalid window '{window}'; expected 'recent:N' with N >= 1",
            operation="compare"
        )
    return int(count)


class ArcTracker:
    """
    Owns arc snapshots and computes drift, comparisons and moment lookups.
    """

    def __init__(self, config: Optional[ArcConfig] = None):
        self._config = config or ArcConfig()
        self._arena: List[ArcSnapshot] = []
        self._index: Dict[str, List[int]] = {}

    # =========================================================================
    # RECORDING
    # =========================================================================

    def record_snapshot(
        self,
        entity_id: str,
        embedding: Sequence[float],
        recorded_at: datetime,
        event_id: Optional[str] = None
    ) -> ArcSnapshot:
        """
        Append a snapshot.

        Rejects timestamps at or before the entity's last snapshot and
        embeddings whose dimension differs from the entity's timeline.
        State is unchanged when the append is rejected.
        """
        vector = as_vector(embedding)
        if not vector:
            raise InvalidParameter(
                "Snapshot embedding must not be empty",
                entity_id=entity_id,
                operation="record_snapshot"
            )
        recorded_at = as_utc(recorded_at)
        positions = self._index.get(entity_id, [])
        delta = 0.0

        if positions:
            previous = self._arena[positions[-1]]
            if recorded_at <= previous.recorded_at:
                raise OutOfOrderSnapshot(
                    f"Snapshot at {recorded_at.isoformat()} is not after "
                    f"{previous.recorded_at.isoformat()}",
                    entity_id=entity_id,
                    operation="record_snapshot"
                )
            if len(vector) != len(previous.embedding):
                raise DimensionMismatch(
                    f"Snapshot dimension {len(vector)} differs from timeline "
                    f"dimension {len(previous.embedding)}",
                    entity_id=entity_id,
                    operation="record_snapshot"
                )
            delta = vector_math.cosine_distance(previous.embedding, vector)

        snapshot = ArcSnapshot(
            entity_id=entity_id,
            embedding=vector,
            recorded_at=recorded_at,
            sequence=len(positions),
            delta=delta,
            event_id=event_id
        )

        self._arena.append(snapshot)
        self._index.setdefault(entity_id, []).append(len(self._arena) - 1)
        return snapshot

    def load_snapshots(self, snapshots: Iterable[ArcSnapshot]) -> int:
        """Replay previously persisted snapshots in order. Returns count loaded."""
        count = 0
        for snapshot in snapshots:
            self.record_snapshot(
                snapshot.entity_id,
                snapshot.embedding,
                snapshot.recorded_at,
                snapshot.event_id
            )
            count += 1
        return count

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def history(self, entity_id: str) -> SnapshotHistory:
        return SnapshotHistory(self._arena, self._index.get(entity_id, []))

    def snapshot_count(self, entity_id: str) -> int:
        return len(self._index.get(entity_id, []))

    def tracked_entities(self) -> List[str]:
        return sorted(self._index)

    def latest(self, entity_id: str) -> Optional[ArcSnapshot]:
        positions = self._index.get(entity_id)
        return self._arena[positions[-1]] if positions else None

    def snapshot_at(self, entity_id: str, at: datetime) -> Optional[ArcSnapshot]:
        """Latest snapshot recorded at or before ``at``."""
        snapshots = self._snapshots(entity_id)
        times = [s.recorded_at for s in snapshots]
        index = bisect_right(times, as_utc(at))
        return snapshots[index - 1] if index else None

    def moment(self, entity_id: str, event_time: datetime) -> ArcSnapshot:
        """Nearest snapshot at or before an event's timestamp."""
        snapshot = self.snapshot_at(entity_id, event_time)
        if snapshot is None:
            raise NoSnapshotBeforeEvent(
                f"No snapshot at or before {event_time.isoformat()}",
                entity_id=entity_id,
                operation="moment"
            )
        return snapshot

    def _snapshots(self, entity_id: str) -> List[ArcSnapshot]:
        return [self._arena[p] for p in self._index.get(entity_id, [])]

    # =========================================================================
    # DRIFT
    # =========================================================================

    def drift(self, entity_id: str) -> DriftScore:
        """
        Sum of consecutive cosine distances across the entity's timeline.

        Fewer than two snapshots yields drift 0 flagged as insufficient.
        """
        snapshots = self._snapshots(entity_id)
        latest_at = snapshots[-1].recorded_at if snapshots else None

        if len(snapshots) < 2:
            return DriftScore(
                entity_id=entity_id,
                drift=0.0,
                snapshot_count=len(snapshots),
                insufficient_history=True,
                net_displacement=0.0,
                assessment=self.assess(0.0),
                latest_at=latest_at
            )

        total = sum(s.delta for s in snapshots[1:])
        net = vector_math.cosine_distance(snapshots[0].embedding, snapshots[-1].embedding)

        return DriftScore(
            entity_id=entity_id,
            drift=total,
            snapshot_count=len(snapshots),
            insufficient_history=False,
            net_displacement=net,
            assessment=self.assess(net),
            latest_at=latest_at
        )

    def rank_by_drift(
        self,
        entity_scope: Optional[Iterable[str]] = None,
        limit: Optional[int] = None
    ) -> List[DriftScore]:
        """
        Rank entities by descending drift.

        Ties are broken by most recent snapshot (newest first), then by id.
        Entities without snapshots sort last.
        """
        if limit is not None and limit < 0:
            raise InvalidParameter(f"limit must be non-negative, got {limit}", operation="rank_by_drift")

        scope = sorted(set(entity_scope)) if entity_scope is not None else self.tracked_entities()
        scores = [self.drift(entity_id) for entity_id in scope]

        def sort_key(score: DriftScore):
            recency = score.latest_at.timestamp() if score.latest_at else float("-inf")
            return (-score.drift, -recency, score.entity_id)

        scores.sort(key=sort_key)
        return scores if limit is None else scores[:limit]

    def assess(self, displacement: float) -> str:
        if displacement < self._config.unchanged_threshold:
            return "essentially unchanged"
        if displacement < self._config.minor_threshold:
            return "minor evolution"
        if displacement < self._config.significant_threshold:
            return "significant evolution"
        return "dramatic transformation"

    def growth_vector(
        self,
        entity_id: str,
        candidates: Iterable[Tuple[str, Vector]] = (),
        limit: int = 5
    ) -> GrowthReport:
        """
        Displacement from the baseline snapshot to the latest one, with the
        ``limit`` candidates best aligned with it. The entity itself is
        never its own neighbour.
        """
        snapshots = self._snapshots(entity_id)
        if len(snapshots) < 2:
            raise InsufficientHistory(
                "Growth vector needs at least two snapshots",
                entity_id=entity_id,
                operation="growth_vector"
            )
        growth = vector_math.subtract(snapshots[-1].embedding, snapshots[0].embedding)
        others = [(cid, vector) for cid, vector in candidates if cid != entity_id]

        return GrowthReport(
            entity_id=entity_id,
            vector=growth,
            snapshot_count=len(snapshots),
            net_drift=vector_math.cosine_distance(snapshots[0].embedding, snapshots[-1].embedding),
            neighbors=tuple(vector_math.aligned(growth, others, limit))
        )

    # =========================================================================
    # COMPARISON
    # =========================================================================

    def compare(self, entity_a: str, entity_b: str, window: Window = None) -> ArcComparison:
        """
        Classify whether two arcs are converging over a window.

        ``window`` is ``"recent:N"`` (last N snapshots of each entity), a
        TimeWindow, or None for the full timelines. Snapshots are paired
        from the most recent backwards.
        """
        for entity_id in (entity_a, entity_b):
            if entity_id not in self._index:
                raise NotFound("Entity has no arc snapshots", entity_id=entity_id, operation="compare")

        series_a = self._select(entity_a, window)
        series_b = self._select(entity_b, window)

        pair_count = min(len(series_a), len(series_b))
        if pair_count == 0:
            raise InsufficientHistory(
                f"No snapshots of both entities fall in window '{self._window_label(window)}'",
                entity_id=entity_a,
                operation="compare"
            )

        aligned_a = series_a[-pair_count:]
        aligned_b = series_b[-pair_count:]

        distances = tuple(
            DistancePoint(
                a_recorded_at=a.recorded_at,
                b_recorded_at=b.recorded_at,
                distance=vector_math.cosine_distance(a.embedding, b.embedding)
            )
            for a, b in zip(aligned_a, aligned_b)
        )

        change = distances[-1].distance - distances[0].distance
        epsilon = self._config.convergence_epsilon
        if pair_count < 2 or abs(change) <= epsilon:
            trend = ArcTrend.STABLE
        elif change < 0:
            trend = ArcTrend.CONVERGENT
        else:
            trend = ArcTrend.DIVERGENT

        trajectory_similarity = None
        trajectory_label = None
        if pair_count >= 2:
            delta_a = vector_math.subtract(aligned_a[-1].embedding, aligned_a[0].embedding)
            delta_b = vector_math.subtract(aligned_b[-1].embedding, aligned_b[0].embedding)
            if np.any(delta_a) and np.any(delta_b):
                trajectory_similarity = vector_math.cosine_similarity(delta_a, delta_b)
                trajectory_label = self._trajectory_label(trajectory_similarity)

        return ArcComparison(
            entity_a=entity_a,
            entity_b=entity_b,
            window=self._window_label(window),
            trend=trend,
            distances=distances,
            distance_change=change,
            insufficient_history=pair_count < 2,
            trajectory_similarity=trajectory_similarity,
            trajectory_label=trajectory_label
        )

    def _select(self, entity_id: str, window: Window) -> List[ArcSnapshot]:
        snapshots = self._snapshots(entity_id)
        if window is None:
            return snapshots
        if isinstance(window, TimeWindow):
            return [s for s in snapshots if window.contains(s.recorded_at)]
        if isinstance(window, str):
            return snapshots[-parse_recent_window(window):]
        raise InvalidParameter(f"Unsupported window {window!r}", entity_id=entity_id, operation="compare")

    @staticmethod
    def _window_label(window: Window) -> str:
        if window is None:
            return "all"
        if isinstance(window, TimeWindow):
            return f"{window.start.isoformat()}..{window.end.isoformat()}"
        return str(window)

    def _trajectory_label(self, similarity: float) -> str:
        if similarity > self._config.similar_trajectory:
            return "similar"
        if similarity < self._config.opposite_trajectory:
            return "opposite"
        return "independent"
