"""
What-If Simulator
=================

Pure simulation of a character learning a new fact.

The character's embedding is shifted toward the fact's embedding by the
blend factor. Perception gaps and irony detection are then re-run against
a HypotheticalWorld overlay holding the shifted embedding and the
uncommitted knowledge record. Nothing is written; the overlay is dropped
when the call returns.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Set, Tuple
import hashlib

from ..contracts.base import InvalidParameter, MissingEmbedding, NotFound
from ..contracts.world import Certainty, KnowledgeRecord, LearningMethod, Vector
from ..embedding import EmbeddingProvider
from ..repository import HypotheticalWorld, KnowledgeFilter, PerceptionFilter, WorldRepository
from .irony import IronyConfig, IronyDetector, KnowledgeAsymmetry, latest_by_holder, group_by_fact
from .perception import PerceptionAnalyzer
from . import vector_math


@dataclass
class WhatIfConfig:
    """Configuration for what-if simulation."""
    blend_factor: float = 0.3
    # Existing knowledge this similar to the new fact is reported as a conflict
    conflict_similarity: float = 0.7

    negligible_threshold: float = 0.02
    minor_threshold: float = 0.05
    moderate_threshold: float = 0.10
    major_threshold: float = 0.20

    def __post_init__(self):
        if not 0.0 <= self.blend_factor <= 1.0:
            raise ValueError("blend_factor must be within [0, 1]")


@dataclass(frozen=True)
class GapChange:
    """An observer's perception gap before and after the hypothetical change."""
    observer_id: str
    gap_before: float
    gap_after: float

    @property
    def delta(self) -> float:
        return self.gap_after - self.gap_before


@dataclass(frozen=True)
class KnowledgeOverlap:
    """Existing knowledge semantically close to the hypothetical fact."""
    fact_key: str
    fact: str
    certainty: Certainty
    similarity: float


@dataclass(frozen=True)
class WhatIfReport:
    character_id: str
    fact: str
    fact_key: str
    certainty: Certainty
    embedding_shift: float
    impact: str
    hypothetical_embedding: Vector
    gap_changes: Tuple[GapChange, ...]
    created_asymmetries: Tuple[KnowledgeAsymmetry, ...]
    resolved_asymmetries: Tuple[KnowledgeAsymmetry, ...]
    conflicts: Tuple[KnowledgeOverlap, ...]

    @property
    def stale_perspectives(self) -> Tuple[str, ...]:
        """Observers whose view of the character would drift from reality."""
        return tuple(c.observer_id for c in self.gap_changes if c.delta > 0)


def _asymmetry_key(asymmetry: KnowledgeAsymmetry) -> Tuple[str, str, str]:
    return (asymmetry.fact_key, asymmetry.informed_id, asymmetry.uninformed_id)


class WhatIfSimulator:
    """Composes hypothetical state and re-runs gap and irony analyses."""

    def __init__(
        self,
        repository: WorldRepository,
        embedder: Optional[EmbeddingProvider] = None,
        config: Optional[WhatIfConfig] = None,
        irony_config: Optional[IronyConfig] = None
    ):
        self._repository = repository
        self._embedder = embedder
        self._config = config or WhatIfConfig()
        self._irony_config = irony_config

    def simulate_learning(
        self,
        character_id: str,
        fact: str,
        target_id: Optional[str] = None,
        certainty: Certainty = Certainty.KNOWS,
        method: LearningMethod = LearningMethod.TOLD,
        fact_embedding: Optional[Vector] = None,
        fact_ref: Optional[str] = None,
        learned_at: Optional[datetime] = None
    ) -> WhatIfReport:
        """
        What changes if ``character_id`` came to hold ``fact``.

        ``target_id`` defaults to the character itself. The fact embedding
        is taken from ``fact_embedding`` or produced by the embedder. The
        record is stamped just after the latest knowledge or character
        update unless ``learned_at`` is given, so repeated runs over the
        same world agree.
        """
        if not fact or not fact.strip():
            raise InvalidParameter(
                "Hypothetical fact text must not be empty",
                entity_id=character_id,
                operation="what_if"
            )
        character = self._repository.get_entity(character_id)
        if character is None:
            raise NotFound("Character not found", entity_id=character_id, operation="what_if")
        if character.embedding is None:
            raise MissingEmbedding("Character has no embedding", entity_id=character_id, operation="what_if")

        fact_vector = fact_embedding if fact_embedding is not None else self._embed(fact, character_id)
        current = character.embedding
        hypothetical = vector_math.blend(current, fact_vector, self._config.blend_factor)
        shift = vector_math.cosine_distance(current, hypothetical)

        record = KnowledgeRecord(
            record_id=self._record_id(character_id, fact),
            holder_id=character_id,
            target_id=target_id or character_id,
            fact=fact,
            certainty=certainty,
            method=method,
            learned_at=learned_at or self._next_instant(character.updated_at),
            fact_embedding=fact_vector,
            fact_ref=fact_ref
        )

        overlay = HypotheticalWorld(
            self._repository,
            extra_knowledge=[record],
            embedding_overrides={character_id: hypothetical}
        )

        before = {_asymmetry_key(a): a for a in IronyDetector(self._repository, self._irony_config).detect().asymmetries}
        after = {_asymmetry_key(a): a for a in IronyDetector(overlay, self._irony_config).detect().asymmetries}

        return WhatIfReport(
            character_id=character_id,
            fact=fact,
            fact_key=record.fact_key,
            certainty=certainty,
            embedding_shift=shift,
            impact=self.classify_impact(shift),
            hypothetical_embedding=hypothetical,
            gap_changes=tuple(self._gap_changes(character_id, overlay)),
            created_asymmetries=tuple(after[k] for k in after if k not in before),
            resolved_asymmetries=tuple(before[k] for k in before if k not in after),
            conflicts=tuple(self._conflicts(character_id, record.fact_key, fact_vector))
        )

    def classify_impact(self, shift: float) -> str:
        if shift < self._config.negligible_threshold:
            return "negligible"
        if shift < self._config.minor_threshold:
            return "minor"
        if shift < self._config.moderate_threshold:
            return "moderate"
        if shift < self._config.major_threshold:
            return "major"
        return "transformative"

    def _embed(self, fact: str, character_id: str) -> Vector:
        if self._embedder is None or not self._embedder.is_available():
            raise MissingEmbedding(
                "No embedding provider available for the hypothetical fact",
                entity_id=character_id,
                operation="what_if"
            )
        vector = self._embedder.embed(fact)
        if vector is None:
            raise MissingEmbedding("Fact text could not be embedded", entity_id=character_id, operation="what_if")
        return vector

    def _gap_changes(self, character_id: str, overlay: HypotheticalWorld) -> List[GapChange]:
        current_view = PerceptionAnalyzer(self._repository)
        hypothetical_view = PerceptionAnalyzer(overlay)

        observers: Set[str] = {
            p.observer_id
            for p in self._repository.list_perceptions(PerceptionFilter(target_id=character_id))
        }

        changes = []
        for observer_id in sorted(observers):
            try:
                before = current_view.gap(observer_id, character_id)
            except MissingEmbedding:
                # Observers whose latest perception has no vector cannot be compared
                continue
            after = hypothetical_view.gap(observer_id, character_id)
            changes.append(GapChange(
                observer_id=observer_id,
                gap_before=before.gap,
                gap_after=after.gap
            ))
        return changes

    def _conflicts(self, character_id: str, fact_key: str, fact_vector: Vector) -> List[KnowledgeOverlap]:
        records = self._repository.list_knowledge(KnowledgeFilter(holder_id=character_id))
        overlaps = []
        for key, group in sorted(group_by_fact(records).items()):
            if key == fact_key:
                continue
            latest = latest_by_holder(group)[character_id]
            if latest.fact_embedding is None or len(latest.fact_embedding) != len(fact_vector):
                continue
            similarity = vector_math.cosine_similarity(latest.fact_embedding, fact_vector)
            if similarity > self._config.conflict_similarity:
                overlaps.append(KnowledgeOverlap(
                    fact_key=key,
                    fact=latest.fact,
                    certainty=latest.certainty,
                    similarity=similarity
                ))
        overlaps.sort(key=lambda o: (-o.similarity, o.fact_key))
        return overlaps

    def _next_instant(self, character_updated_at: datetime) -> datetime:
        """An instant after every ledger record and the character's last update."""
        latest = max([character_updated_at] + [r.learned_at for r in self._repository.list_knowledge()])
        return latest + timedelta(seconds=1)

    @staticmethod
    def _record_id(character_id: str, fact: str) -> str:
        digest = hashlib.sha256(f"whatif|{character_id}|{fact}".encode('utf-8')).hexdigest()[:16]
        return f"whatif_{digest}"
