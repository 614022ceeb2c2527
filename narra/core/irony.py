"""
Irony Detector
==============

Finds knowledge asymmetries (dramatic irony) in the knowledge ledger.

For every fact the latest record per character decides that character's
stance. A character who knows the fact paired with one who denies it,
believes it wrongly, has forgotten it or has no record of it forms an
asymmetry. Asymmetries rank by perception tension between the pair
(highest first), then by how few scenes they have shared since the
asymmetry began, then by the enforcement of the universe fact a record
names through ``fact_ref`` (strict first).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..contracts.base import name_from_id
from ..contracts.world import Certainty, EnforcementLevel, EntityType, KnowledgeRecord, LearningMethod
from ..repository import (
    EntityReader, FactReader, KnowledgeReader, PerceptionReader, SceneReader, PerceptionFilter
)


@dataclass
class IronyConfig:
    """Configuration for irony detection."""
    # Scenes the informed character attended since onset
    high_signal_scenes: int = 5
    medium_signal_scenes: int = 2

    # Ignore asymmetries whose informed character attended fewer scenes
    min_scene_threshold: int = 0

    max_opportunities: int = 5

    # Dramatic weight bonuses on top of scenes since onset
    high_tension_level: int = 7
    high_tension_bonus: float = 3.0
    moderate_tension_level: int = 4
    moderate_tension_bonus: float = 1.5
    strict_fact_bonus: float = 3.0
    warning_fact_bonus: float = 1.0


@dataclass(frozen=True)
class KnowledgeAsymmetry:
    """One informed/uninformed pair for one fact."""
    fact_key: str
    fact: str
    target_id: str
    informed_id: str
    uninformed_id: str
    informed_certainty: Certainty
    uninformed_certainty: Optional[Certainty]
    learning_method: LearningMethod
    onset: datetime
    tension_level: Optional[int]
    shared_scene_count: int
    scenes_since_onset: int
    signal_strength: str
    enforcement: Optional[EnforcementLevel] = None  # Of the universe fact named by fact_ref
    dramatic_weight: float = 0.0

    @property
    def misinformed(self) -> bool:
        return self.uninformed_certainty is Certainty.BELIEVES_WRONGLY

    @property
    def unaware(self) -> bool:
        return self.uninformed_certainty is None


@dataclass(frozen=True)
class ConflictingBelief:
    holder_id: str
    believed: str
    truth_value: Optional[str]
    learned_at: datetime


@dataclass(frozen=True)
class KnowledgeConflict:
    """Characters holding a fact wrongly, with what is actually true."""
    fact_key: str
    target_id: str
    beliefs: Tuple[ConflictingBelief, ...]


@dataclass(frozen=True)
class IronyReport:
    """Ranked asymmetries plus the strongest narrative opportunities."""
    asymmetries: Tuple[KnowledgeAsymmetry, ...]
    focus: Optional[str] = None
    opportunities: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return len(self.asymmetries)

    @property
    def high_signal_count(self) -> int:
        return sum(1 for a in self.asymmetries if a.signal_strength == "high")


class IronySource(EntityReader, KnowledgeReader, PerceptionReader, SceneReader, FactReader):
    """Reader surface required by the detector."""


def latest_by_holder(records: List[KnowledgeRecord]) -> Dict[str, KnowledgeRecord]:
    """
    Latest record per holder.

    Records at the same instant resolve by ledger order (later wins).
    """
    latest: Dict[str, KnowledgeRecord] = {}
    for record in sorted(records, key=lambda r: r.learned_at):
        latest[record.holder_id] = record
    return latest


_ENFORCEMENT_RANK = {
    EnforcementLevel.STRICT: 0,
    EnforcementLevel.WARNING: 1,
    EnforcementLevel.INFORMATIONAL: 2,
}


def group_by_fact(records: List[KnowledgeRecord]) -> Dict[str, List[KnowledgeRecord]]:
    groups: Dict[str, List[KnowledgeRecord]] = {}
    for record in records:
        groups.setdefault(record.fact_key, []).append(record)
    return groups


class IronyDetector:
    """
    Knowledge asymmetry detection over the full ledger.
    """

    def __init__(self, repository: IronySource, config: Optional[IronyConfig] = None):
        self._repository = repository
        self._config = config or IronyConfig()

    def detect(self, focus: Optional[str] = None) -> IronyReport:
        """
        All asymmetries, ranked. ``focus`` keeps only pairs involving that
        character.
        """
        characters = [e.entity_id for e in self._repository.list_entities_by_type(EntityType.CHARACTER)]
        groups = group_by_fact(self._repository.list_knowledge())
        enforcement = {f.fact_id: f.enforcement for f in self._repository.list_facts()}

        asymmetries: List[KnowledgeAsymmetry] = []
        for fact_key in sorted(groups):
            asymmetries.extend(
                self._fact_asymmetries(fact_key, groups[fact_key], characters, focus, enforcement)
            )

        asymmetries.sort(key=lambda a: (
            -(a.tension_level or 0),
            a.shared_scene_count,
            _ENFORCEMENT_RANK.get(a.enforcement, len(_ENFORCEMENT_RANK)),
            a.onset,
            a.fact_key,
            a.informed_id,
            a.uninformed_id,
        ))

        return IronyReport(
            asymmetries=tuple(asymmetries),
            focus=focus,
            opportunities=self._opportunities(asymmetries)
        )

    def _fact_asymmetries(
        self,
        fact_key: str,
        records: List[KnowledgeRecord],
        characters: List[str],
        focus: Optional[str],
        enforcement: Dict[str, EnforcementLevel]
    ) -> List[KnowledgeAsymmetry]:
        latest = latest_by_holder(records)

        informed = sorted(h for h, r in latest.items() if r.certainty.is_informed)
        if not informed:
            return []

        population = sorted(set(characters) | set(latest))
        uninformed = [
            c for c in population
            if c not in latest or latest[c].certainty.is_uninformed
        ]

        found = []
        for informed_id in informed:
            knower = latest[informed_id]
            level = enforcement.get(knower.fact_ref) if knower.fact_ref else None
            for uninformed_id in uninformed:
                if uninformed_id == informed_id:
                    continue
                if focus is not None and focus not in (informed_id, uninformed_id):
                    continue

                other = latest.get(uninformed_id)
                onset = knower.learned_at if other is None else min(knower.learned_at, other.learned_at)
                scenes_since = self._scenes_since([informed_id], onset)
                if scenes_since < self._config.min_scene_threshold:
                    continue

                tension = self._pair_tension(informed_id, uninformed_id)
                found.append(KnowledgeAsymmetry(
                    fact_key=fact_key,
                    fact=knower.fact,
                    target_id=knower.target_id,
                    informed_id=informed_id,
                    uninformed_id=uninformed_id,
                    informed_certainty=knower.certainty,
                    uninformed_certainty=other.certainty if other else None,
                    learning_method=knower.method,
                    onset=onset,
                    tension_level=tension,
                    shared_scene_count=self._scenes_since([informed_id, uninformed_id], onset),
                    scenes_since_onset=scenes_since,
                    signal_strength=self.classify_signal(scenes_since),
                    enforcement=level,
                    dramatic_weight=self.dramatic_weight(scenes_since, tension, level)
                ))
        return found

    def dramatic_weight(
        self,
        scenes_since: int,
        tension_level: Optional[int],
        enforcement: Optional[EnforcementLevel]
    ) -> float:
        """Scenes since onset, raised by pair tension and by the linked fact's enforcement."""
        weight = float(scenes_since)
        if tension_level is not None:
            if tension_level >= self._config.high_tension_level:
                weight += self._config.high_tension_bonus
            elif tension_level >= self._config.moderate_tension_level:
                weight += self._config.moderate_tension_bonus
        if enforcement is EnforcementLevel.STRICT:
            weight += self._config.strict_fact_bonus
        elif enforcement is EnforcementLevel.WARNING:
            weight += self._config.warning_fact_bonus
        return weight

    def classify_signal(self, scenes: int) -> str:
        if scenes >= self._config.high_signal_scenes:
            return "high"
        if scenes >= self._config.medium_signal_scenes:
            return "medium"
        return "low"

    def _scenes_since(self, participants: List[str], onset: datetime) -> int:
        scenes = self._repository.list_scenes_by_participants(participants)
        return sum(1 for s in scenes if s.occurred_at > onset)

    def _pair_tension(self, a: str, b: str) -> Optional[int]:
        """Highest tension in the latest perception either way between a pair."""
        levels = []
        for observer, target in ((a, b), (b, a)):
            records = self._repository.list_perceptions(
                PerceptionFilter(observer_id=observer, target_id=target)
            )
            if records:
                latest = max(enumerate(records), key=lambda item: (item[1].recorded_at, item[0]))[1]
                if latest.tension_level is not None:
                    levels.append(latest.tension_level)
        return max(levels) if levels else None

    def _opportunities(self, asymmetries: List[KnowledgeAsymmetry]) -> Tuple[str, ...]:
        lines = []
        for asymmetry in asymmetries[:self._config.max_opportunities]:
            informed = self._name(asymmetry.informed_id)
            uninformed = self._name(asymmetry.uninformed_id)
            if asymmetry.misinformed:
                stance = "wrongly believes otherwise"
            elif asymmetry.unaware:
                stance = "has no idea"
            else:
                stance = f"{asymmetry.uninformed_certainty.value} it"
            tension = f" (tension {asymmetry.tension_level})" if asymmetry.tension_level is not None else ""
            lines.append(f"{informed} knows \"{asymmetry.fact}\" but {uninformed} {stance}{tension}")
        return tuple(lines)

    def _name(self, entity_id: str) -> str:
        entity = self._repository.get_entity(entity_id)
        return entity.name if entity is not None else name_from_id(entity_id)

    # =========================================================================
    # KNOWLEDGE CONFLICTS
    # =========================================================================

    def knowledge_conflicts(self) -> List[KnowledgeConflict]:
        """Facts some characters currently believe wrongly."""
        conflicts = []
        groups = group_by_fact(self._repository.list_knowledge())
        for fact_key in sorted(groups):
            latest = latest_by_holder(groups[fact_key])
            wrong = [
                latest[h] for h in sorted(latest)
                if latest[h].certainty is Certainty.BELIEVES_WRONGLY
            ]
            if not wrong:
                continue
            conflicts.append(KnowledgeConflict(
                fact_key=fact_key,
                target_id=wrong[0].target_id,
                beliefs=tuple(
                    ConflictingBelief(
                        holder_id=r.holder_id,
                        believed=r.fact,
                        truth_value=r.truth_value,
                        learned_at=r.learned_at
                    )
                    for r in wrong
                )
            ))
        return conflicts
