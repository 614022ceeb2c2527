"""
Engine Orchestration Module

Unified entry point for calling layers (CLI, tool dispatch). One method per
analysis; each returns a Result carrying either the report or an Error with
the entity and operation that failed.

DESIGN PRINCIPLES:
==================
1. Components read the world only through repository interfaces
2. Every request is traceable through observability
3. The ArcTracker ledger is the only state the engine owns
4. No caching - callers wrap operations and invalidate on writes
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Collection, Iterable, Optional, Sequence
import time

from .contracts.base import (
    AnalysisError, InvalidParameter, MissingEmbedding, NotFound, Result
)
from .contracts.events import AuditEventType
from .contracts.world import Certainty, EntityType, LearningMethod, Vector
from .core import vector_math
from .core.arc import ArcConfig, ArcTracker
from .core.clustering import ClusteringConfig, CoverageExpectation, ThematicClusterer
from .core.consistency import ConsistencyValidator, ValidatorConfig
from .core.impact import ImpactAnalyzer, ImpactConfig
from .core.influence import InfluenceConfig, InfluencePropagator
from .core.irony import IronyConfig, IronyDetector
from .core.perception import PerceptionAnalyzer, PerceptionConfig
from .core.topology import CharacterNetwork
from .core.whatif import WhatIfConfig, WhatIfSimulator
from .embedding import EmbeddingProvider
from .observability import ObservabilityConfig, ObservabilityEngine
from .repository import NEIGHBOR_TYPES, WorldRepository, embedded_entities


@dataclass
class EngineConfig:
    """Unified configuration for every analytics component."""
    arc: ArcConfig = None
    perception: PerceptionConfig = None
    irony: IronyConfig = None
    influence: InfluenceConfig = None
    clustering: ClusteringConfig = None
    validation: ValidatorConfig = None
    impact: ImpactConfig = None
    whatif: WhatIfConfig = None
    observability: ObservabilityConfig = None

    def __post_init__(self):
        self.arc = self.arc or ArcConfig()
        self.perception = self.perception or PerceptionConfig()
        self.irony = self.irony or IronyConfig()
        self.influence = self.influence or InfluenceConfig()
        self.clustering = self.clustering or ClusteringConfig()
        self.validation = self.validation or ValidatorConfig()
        self.impact = self.impact or ImpactConfig()
        self.whatif = self.whatif or WhatIfConfig()
        self.observability = self.observability or ObservabilityConfig()


class NarrativeAnalyticsEngine:
    """
    Narrative analytics facade.

    Component exceptions never escape: every public operation returns a
    Result and leaves an audit entry behind.
    """

    def __init__(
        self,
        repository: WorldRepository,
        config: Optional[EngineConfig] = None,
        embedder: Optional[EmbeddingProvider] = None,
        arc_tracker: Optional[ArcTracker] = None
    ):
        self._repository = repository
        self._config = config or EngineConfig()
        self._embedder = embedder

        self._arcs = arc_tracker or ArcTracker(self._config.arc)
        self._perception = PerceptionAnalyzer(repository, self._arcs, self._config.perception)
        self._irony = IronyDetector(repository, self._config.irony)
        self._influence = InfluencePropagator(repository, self._config.influence)
        self._clusterer = ThematicClusterer(repository, self._config.clustering)
        self._validator = ConsistencyValidator(repository, self._config.validation)
        self._impact = ImpactAnalyzer(repository, self._config.impact)
        self._whatif = WhatIfSimulator(repository, embedder, self._config.whatif, self._config.irony)
        self._network = CharacterNetwork(repository)
        self._observability = ObservabilityEngine(self._config.observability)

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _run(
        self,
        operation: str,
        layer: str,
        entity_id: Optional[str],
        action: Callable[[], object],
        event_type: AuditEventType = AuditEventType.ANALYSIS
    ) -> Result:
        started = time.perf_counter()
        self._observability.collect_metric("analysis_requests_total", 1, {"operation": operation})

        try:
            value = action()
        except AnalysisError as exc:
            return self._fail(operation, layer, entity_id, exc)
        except ValueError as exc:
            # Contract validation of caller-supplied values
            return self._fail(operation, layer, entity_id, InvalidParameter(str(exc)))

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        self._observability.collect_metric("analysis_duration_ms", elapsed_ms, {"operation": operation})
        self._observability.log_audit(
            action=operation,
            layer=layer,
            entity_id=entity_id,
            event_type=event_type,
            metadata=(("outcome", "success"), ("duration_ms", f"{elapsed_ms:.3f}"))
        )
        return Result.success(value)

    def _fail(self, operation: str, layer: str, entity_id: Optional[str], exc: AnalysisError) -> Result:
        error = exc.to_error()
        if error.context_value("entity_id") is None and entity_id is not None:
            error = error.with_context("entity_id", entity_id)
        if error.context_value("operation") is None:
            error = error.with_context("operation", operation)

        self._observability.log_audit(
            action=operation,
            layer=layer,
            entity_id=entity_id,
            event_type=AuditEventType.ERROR,
            metadata=(("error_code", error.code.name), ("message", error.message))
        )
        self._observability.collect_metric(
            "analysis_failures_total", 1,
            {"operation": operation, "error_code": error.code.name}
        )
        return Result.failure(error)

    # =========================================================================
    # ARC INTERFACE
    # =========================================================================

    def record_snapshot(
        self,
        entity_id: str,
        embedding: Optional[Sequence[float]] = None,
        recorded_at: Optional[datetime] = None,
        event_id: Optional[str] = None
    ) -> Result:
        """
        Commit an arc snapshot. Defaults to the entity's current embedding
        recorded now.
        """
        def action():
            vector = embedding
            if vector is None:
                if self._repository.get_entity(entity_id) is None:
                    raise NotFound("Entity not found", entity_id=entity_id, operation="record_snapshot")
                vector = self._repository.get_embedding(entity_id)
                if vector is None:
                    raise MissingEmbedding(
                        "Entity has no embedding to snapshot",
                        entity_id=entity_id,
                        operation="record_snapshot"
                    )
            snapshot = self._arcs.record_snapshot(
                entity_id, vector, recorded_at or datetime.now(timezone.utc), event_id
            )
            self._observability.collect_metric("snapshots_recorded_total", 1)
            return snapshot

        return self._run("record_snapshot", "arc", entity_id, action, AuditEventType.SNAPSHOT)

    def arc_drift(self, entity_id: str) -> Result:
        return self._run("arc_drift", "arc", entity_id, lambda: self._arcs.drift(entity_id))

    def rank_by_drift(self, entity_ids: Optional[Iterable[str]] = None, limit: Optional[int] = None) -> Result:
        scope = list(entity_ids) if entity_ids is not None else None
        return self._run("rank_by_drift", "arc", None, lambda: self._arcs.rank_by_drift(scope, limit))

    def arc_history(self, entity_id: str) -> Result:
        return self._run("arc_history", "arc", entity_id, lambda: self._arcs.history(entity_id))

    def compare_arcs(self, entity_a: str, entity_b: str, window=None) -> Result:
        """``window`` is "recent:N", a TimeWindow, or None for full history."""
        return self._run(
            "compare_arcs", "arc", entity_a,
            lambda: self._arcs.compare(entity_a, entity_b, window)
        )

    def arc_moment(self, entity_id: str, event_id: str) -> Result:
        """The entity's snapshot at or before an event entity's date."""
        def action():
            event = self._repository.get_entity(event_id)
            if event is None:
                raise NotFound("Event not found", entity_id=event_id, operation="arc_moment")
            if event.occurs_at is None:
                raise InvalidParameter(
                    "Event has no date to anchor a moment lookup",
                    entity_id=event_id,
                    operation="arc_moment"
                )
            return self._arcs.moment(entity_id, event.occurs_at)

        return self._run("arc_moment", "arc", entity_id, action)

    def growth_vector(self, entity_id: str, limit: int = 5) -> Result:
        """Baseline-to-latest direction and the entities best aligned with it."""
        def action():
            candidates = embedded_entities(self._repository, NEIGHBOR_TYPES, exclude={entity_id})
            return self._arcs.growth_vector(entity_id, candidates, limit)

        return self._run("growth_vector", "arc", entity_id, action)

    # =========================================================================
    # PERCEPTION INTERFACE
    # =========================================================================

    def perception_gap(self, observer_id: str, target_id: str) -> Result:
        return self._run(
            "perception_gap", "perception", target_id,
            lambda: self._perception.gap(observer_id, target_id)
        )

    def perception_matrix(self, target_id: str, observer_ids: Optional[Sequence[str]] = None) -> Result:
        return self._run(
            "perception_matrix", "perception", target_id,
            lambda: self._perception.matrix(target_id, observer_ids)
        )

    def perception_shift(self, observer_id: str, target_id: str) -> Result:
        return self._run(
            "perception_shift", "perception", target_id,
            lambda: self._perception.shift(observer_id, target_id)
        )

    def misperception_vector(self, observer_id: str, target_id: str, limit: int = 5) -> Result:
        return self._run(
            "misperception_vector", "perception", target_id,
            lambda: self._perception.misperception_vector(observer_id, target_id, limit)
        )

    # =========================================================================
    # KNOWLEDGE INTERFACE
    # =========================================================================

    def detect_irony(self, focus: Optional[str] = None) -> Result:
        return self._run("detect_irony", "irony", focus, lambda: self._irony.detect(focus))

    def knowledge_conflicts(self) -> Result:
        return self._run("knowledge_conflicts", "irony", None, self._irony.knowledge_conflicts)

    def propagate_influence(
        self,
        seed_id: str,
        fact_key: Optional[str] = None,
        max_depth: Optional[int] = None,
        min_likelihood: Optional[float] = None
    ) -> Result:
        return self._run(
            "propagate_influence", "influence", seed_id,
            lambda: self._influence.propagate(seed_id, fact_key, max_depth, min_likelihood)
        )

    # =========================================================================
    # THEMES INTERFACE
    # =========================================================================

    def discover_themes(self, entity_types: Sequence[EntityType], k: int) -> Result:
        return self._run(
            "discover_themes", "clustering", None,
            lambda: self._clusterer.cluster(entity_types, k)
        )

    def thematic_gaps(
        self,
        entity_types: Sequence[EntityType],
        k: int,
        expectations: Sequence[CoverageExpectation]
    ) -> Result:
        return self._run(
            "thematic_gaps", "clustering", None,
            lambda: ThematicClusterer.thematic_gaps(self._clusterer.cluster(entity_types, k), expectations)
        )

    # =========================================================================
    # VALIDATION AND IMPACT INTERFACE
    # =========================================================================

    def validate_entity(self, entity_id: str) -> Result:
        return self._run("validate_entity", "consistency", entity_id, lambda: self._validator.validate(entity_id))

    def investigate_contradictions(self, entity_id: str, max_depth: int = 2) -> Result:
        return self._run(
            "investigate_contradictions", "consistency", entity_id,
            lambda: self._validator.investigate(entity_id, max_depth)
        )

    def analyze_impact(
        self,
        entity_id: str,
        description: str = "",
        max_depth: Optional[int] = None,
        protected: Collection[str] = ()
    ) -> Result:
        return self._run(
            "analyze_impact", "impact", entity_id,
            lambda: self._impact.analyze(entity_id, description, max_depth, protected)
        )

    def what_if(
        self,
        character_id: str,
        fact: str,
        target_id: Optional[str] = None,
        certainty: Certainty = Certainty.KNOWS,
        method: LearningMethod = LearningMethod.TOLD,
        fact_embedding: Optional[Vector] = None,
        fact_ref: Optional[str] = None
    ) -> Result:
        return self._run(
            "what_if", "whatif", character_id,
            lambda: self._whatif.simulate_learning(
                character_id, fact, target_id, certainty, method, fact_embedding, fact_ref
            ),
            AuditEventType.SIMULATION
        )

    # =========================================================================
    # NETWORK AND VECTOR INTERFACE
    # =========================================================================

    def character_centrality(self) -> Result:
        return self._run("character_centrality", "topology", None, self._network.centrality)

    def nearest_entities(
        self,
        entity_id: str,
        k: int = 5,
        entity_types: Optional[Sequence[EntityType]] = None
    ) -> Result:
        """Entities semantically closest to ``entity_id``."""
        def action():
            query = self._embedding_of(entity_id, "nearest_entities")
            return vector_math.nearest_k(query, self._candidates(entity_types, {entity_id}), k)

        return self._run("nearest_entities", "vectors", entity_id, action)

    def semantic_midpoint(
        self,
        entity_a: str,
        entity_b: str,
        k: int = 5,
        entity_types: Optional[Sequence[EntityType]] = None
    ) -> Result:
        """Entities nearest the centroid of two entities' embeddings."""
        def action():
            midpoint = vector_math.centroid([
                self._embedding_of(entity_a, "semantic_midpoint"),
                self._embedding_of(entity_b, "semantic_midpoint"),
            ])
            return vector_math.nearest_k(midpoint, self._candidates(entity_types, {entity_a, entity_b}), k)

        return self._run("semantic_midpoint", "vectors", entity_a, action)

    def _embedding_of(self, entity_id: str, operation: str) -> Vector:
        if self._repository.get_entity(entity_id) is None:
            raise NotFound("Entity not found", entity_id=entity_id, operation=operation)
        embedding = self._repository.get_embedding(entity_id)
        if embedding is None:
            raise MissingEmbedding("Entity has no embedding", entity_id=entity_id, operation=operation)
        return embedding

    def _candidates(self, entity_types: Optional[Sequence[EntityType]], exclude: set):
        return embedded_entities(self._repository, entity_types, exclude)

    # =========================================================================
    # LAYER ACCESS
    # =========================================================================

    @property
    def arc_tracker(self) -> ArcTracker:
        return self._arcs

    @property
    def observability(self) -> ObservabilityEngine:
        return self._observability

    @property
    def repository(self) -> WorldRepository:
        return self._repository

    @property
    def config(self) -> EngineConfig:
        return self._config


__all__ = ['EngineConfig', 'NarrativeAnalyticsEngine']
