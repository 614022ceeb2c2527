"""
Consistency Validator
=====================

Runs a fixed rule set against one entity:

1. Referential integrity - every referenced id resolves
2. Timeline ordering - event sequence agrees with dates, scenes are
   anchored to an event and a location, knowledge is not recorded before
   the event it was learned at
3. Relationship sanity - no circular parent/child pairs, tension
   asymmetries flagged
4. Fact compliance - entity text checked against applicable strict and
   warning universe facts

The validator only classifies. Critical violations are reported as
blocking; the mutation layer decides whether to reject.
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple
import re

from ..contracts.base import InvalidParameter, NotFound
from ..contracts.world import (
    Entity, EntityType, EnforcementLevel, RelationshipType, UniverseFact
)
from ..repository import (
    WorldRepository, KnowledgeFilter, PerceptionFilter, RelationshipFilter
)
from .references import build_reference_graph


NEGATION_MARKERS = ("no ", "not ", "cannot ", "never ", "without ", "lacks ")
_WORD = re.compile(r"[a-z0-9']+")


class Severity(Enum):
    """Violation severity, ordered INFO < WARNING < CRITICAL."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return {"info": 0, "warning": 1, "critical": 2}[self.value]


class ValidationRule(Enum):
    REFERENTIAL_INTEGRITY = "referential_integrity"
    TIMELINE = "timeline"
    RELATIONSHIP = "relationship"
    FACT_COMPLIANCE = "fact_compliance"


@dataclass
class ValidatorConfig:
    """Configuration for consistency validation."""
    # Heuristic matches at or below this confidence are informational
    confidence_threshold: float = 0.5
    # Characters scanned before a keyword for a negation marker
    negation_window: int = 20
    # Keywords shorter than this are ignored
    min_keyword_length: int = 4
    # Tension difference between two perceptions of one pair
    tension_asymmetry: int = 5

    timeline_confidence: float = 0.9
    relationship_confidence: float = 0.6

    max_investigation_depth: int = 5


@dataclass(frozen=True)
class Violation:
    entity_id: str
    rule: ValidationRule
    severity: Severity
    message: str
    confidence: float
    fact_id: Optional[str] = None
    fact_title: Optional[str] = None
    intentional: bool = False
    suggested_fix: Optional[str] = None

    @property
    def blocking(self) -> bool:
        return self.severity is Severity.CRITICAL


@dataclass(frozen=True)
class ValidationResult:
    entity_id: str
    violations: Tuple[Violation, ...] = field(default_factory=tuple)

    @property
    def has_blocking(self) -> bool:
        return any(v.blocking for v in self.violations)

    @property
    def is_valid(self) -> bool:
        return not self.has_blocking

    @property
    def total(self) -> int:
        return len(self.violations)

    def by_severity(self) -> Dict[Severity, List[Violation]]:
        grouped: Dict[Severity, List[Violation]] = {}
        for violation in self.violations:
            grouped.setdefault(violation.severity, []).append(violation)
        return grouped

    def warnings(self) -> List[str]:
        """Formatted non-blocking messages."""
        return [
            f"{v.severity.value.upper()}: {v.message}"
            for v in self.violations if not v.blocking
        ]


@dataclass(frozen=True)
class InvestigationReport:
    origin_id: str
    max_depth: int
    entities_checked: int
    violations: Tuple[Violation, ...]

    @property
    def has_blocking(self) -> bool:
        return any(v.blocking for v in self.violations)


def severity_for(enforcement: EnforcementLevel, confidence: float, intentional: bool,
                 threshold: float = 0.5) -> Severity:
    """Map fact enforcement and match confidence to a severity."""
    if intentional:
        return Severity.INFO
    if enforcement is EnforcementLevel.STRICT and confidence > threshold:
        return Severity.CRITICAL
    if enforcement is EnforcementLevel.WARNING and confidence > threshold:
        return Severity.WARNING
    return Severity.INFO


def suggested_fix(rule: ValidationRule, message: str) -> Optional[str]:
    if rule is ValidationRule.REFERENTIAL_INTEGRITY:
        return "Create the missing entity or remove the dangling reference"
    if rule is ValidationRule.TIMELINE:
        if "learning event" in message:
            return "Move the learning event earlier or correct when the knowledge was recorded"
        if "anchored" in message:
            return "Attach the scene to an existing event and location"
        return "Reorder the event sequence or correct the event date"
    if rule is ValidationRule.RELATIONSHIP:
        if "Circular" in message:
            return "Remove one parent/child relationship - characters cannot be mutual parents"
        return "Review whether the asymmetry is intentional dramatic tension or an error"
    if rule is ValidationRule.FACT_COMPLIANCE:
        return "Review the entity against the universe fact, update the entity or narrow the fact scope"
    return None


class ConsistencyValidator:
    """Per-entity rule evaluation against the world."""

    def __init__(self, repository: WorldRepository, config: Optional[ValidatorConfig] = None):
        self._repository = repository
        self._config = config or ValidatorConfig()

    def validate(self, entity_id: str) -> ValidationResult:
        entity = self._repository.get_entity(entity_id)
        if entity is None:
            raise NotFound("Entity not found", entity_id=entity_id, operation="validate")

        violations: List[Violation] = []
        violations.extend(self._check_references(entity))
        violations.extend(self._check_timeline(entity))
        if entity.entity_type == EntityType.CHARACTER:
            violations.extend(self._check_relationships(entity))
        violations.extend(self._check_facts(entity))

        violations.sort(key=lambda v: (-v.severity.rank, v.rule.value, v.message))
        return ValidationResult(entity_id=entity_id, violations=tuple(violations))

    def investigate(self, entity_id: str, max_depth: int = 2) -> InvestigationReport:
        """
        Breadth-first validation of an entity and everything connected to
        it within ``max_depth`` hops.
        """
        if max_depth < 0 or max_depth > self._config.max_investigation_depth:
            raise InvalidParameter(
                f"max_depth must be within 0-{self._config.max_investigation_depth}, got {max_depth}",
                entity_id=entity_id,
                operation="investigate"
            )
        if self._repository.get_entity(entity_id) is None:
            raise NotFound("Entity not found", entity_id=entity_id, operation="investigate")

        graph = build_reference_graph(self._repository)
        visited = {entity_id}
        queue = deque([(entity_id, 0)])
        violations: List[Violation] = []
        checked = 0

        while queue:
            current, depth = queue.popleft()
            if self._repository.get_entity(current) is not None:
                violations.extend(self.validate(current).violations)
                checked += 1

            if depth < max_depth and current in graph:
                for neighbor in sorted(graph.neighbors(current)):
                    if neighbor not in visited:
                        visited.add(neighbor)
                        queue.append((neighbor, depth + 1))

        return InvestigationReport(
            origin_id=entity_id,
            max_depth=max_depth,
            entities_checked=checked,
            violations=tuple(violations)
        )

    # =========================================================================
    # RULE: REFERENTIAL INTEGRITY
    # =========================================================================

    def _referenced_ids(self, entity: Entity) -> List[Tuple[str, str]]:
        """(referenced id, how it is referenced) pairs."""
        refs = [(ref, "reference") for ref in entity.references]

        if entity.entity_type == EntityType.SCENE:
            scene = self._repository.get_scene(entity.entity_id)
            if scene is not None:
                refs.extend((p, "scene participant") for p in scene.participants)
                if scene.event_id:
                    refs.append((scene.event_id, "scene event"))
                if scene.location_id:
                    refs.append((scene.location_id, "scene location"))

        if entity.entity_type == EntityType.CHARACTER:
            for record in self._repository.list_knowledge(KnowledgeFilter(holder_id=entity.entity_id)):
                refs.append((record.target_id, "knowledge target"))
                if record.source_character_id:
                    refs.append((record.source_character_id, "knowledge source"))
                if record.event_id:
                    refs.append((record.event_id, "learning event"))
            for relationship in self._repository.list_relationships(
                RelationshipFilter(character_id=entity.entity_id)
            ):
                refs.append((relationship.other(entity.entity_id), "relationship"))
            for perception in self._repository.list_perceptions(
                PerceptionFilter(observer_id=entity.entity_id)
            ):
                refs.append((perception.target_id, "perception target"))

        return list(dict.fromkeys(refs))

    def _check_references(self, entity: Entity) -> List[Violation]:
        violations = []
        for referenced, kind in self._referenced_ids(entity):
            if self._repository.get_entity(referenced) is None:
                message = f"Dangling {kind}: {referenced} does not exist"
                violations.append(self._violation(
                    entity, ValidationRule.REFERENTIAL_INTEGRITY, Severity.CRITICAL, message, 1.0
                ))
        return violations

    # =========================================================================
    # RULE: TIMELINE
    # =========================================================================

    def _check_timeline(self, entity: Entity) -> List[Violation]:
        severity = Severity.CRITICAL if self._has_strict_fact(entity) else Severity.WARNING
        confidence = self._config.timeline_confidence
        violations = []

        if entity.entity_type == EntityType.EVENT and entity.sequence is not None and entity.occurs_at:
            for other in self._repository.list_entities_by_type(EntityType.EVENT):
                if other.entity_id == entity.entity_id or other.sequence is None or other.occurs_at is None:
                    continue
                earlier_in_sequence = other.sequence < entity.sequence
                later_in_time = other.occurs_at > entity.occurs_at
                if (earlier_in_sequence and later_in_time) or (
                    other.sequence > entity.sequence and other.occurs_at < entity.occurs_at
                ):
                    message = (
                        f"Event sequence {entity.sequence} conflicts with {other.entity_id} "
                        f"(sequence {other.sequence}) dated "
                        f"{'after' if earlier_in_sequence else 'before'} it"
                    )
                    violations.append(self._violation(
                        entity, ValidationRule.TIMELINE, severity, message, confidence
                    ))

        if entity.entity_type == EntityType.SCENE:
            violations.extend(self._check_scene_anchor(entity, severity, confidence))

        if entity.entity_type == EntityType.CHARACTER:
            for record in self._repository.list_knowledge(KnowledgeFilter(holder_id=entity.entity_id)):
                if not record.event_id:
                    continue
                event = self._repository.get_entity(record.event_id)
                if event is None or event.occurs_at is None:
                    continue
                if record.learned_at < event.occurs_at:
                    message = (
                        f"Knowledge '{record.fact}' recorded before its learning event {event.entity_id}"
                    )
                    violations.append(self._violation(
                        entity, ValidationRule.TIMELINE, severity, message, confidence
                    ))

        return violations

    def _check_scene_anchor(self, entity: Entity, severity: Severity, confidence: float) -> List[Violation]:
        scene = self._repository.get_scene(entity.entity_id)
        problems = []
        if scene is None:
            problems.append("Scene has no participation record and is not anchored")
        else:
            for anchor_id, expected, label in (
                (scene.event_id, EntityType.EVENT, "an event"),
                (scene.location_id, EntityType.LOCATION, "a location"),
            ):
                if anchor_id is None:
                    problems.append(f"Scene is not anchored to {label}")
                    continue
                anchor = self._repository.get_entity(anchor_id)
                if anchor is not None and anchor.entity_type != expected:
                    problems.append(f"Scene {label} anchor {anchor_id} is a {anchor.entity_type.value}")

        return [
            self._violation(entity, ValidationRule.TIMELINE, severity, message, confidence)
            for message in problems
        ]

    # =========================================================================
    # RULE: RELATIONSHIPS
    # =========================================================================

    def _check_relationships(self, entity: Entity) -> List[Violation]:
        violations = []
        relationships = self._repository.list_relationships(RelationshipFilter(character_id=entity.entity_id))

        parents_of = set()
        parented_by = set()
        for relationship in relationships:
            if relationship.rel_type != RelationshipType.FAMILY or relationship.subtype != "parent":
                continue
            if relationship.from_id == entity.entity_id:
                parents_of.add(relationship.to_id)
            else:
                parented_by.add(relationship.from_id)

        for other in sorted(parents_of & parented_by):
            message = f"Circular parent relationship: {entity.entity_id} is parent of {other} and vice versa"
            violations.append(self._violation(
                entity, ValidationRule.RELATIONSHIP, Severity.CRITICAL, message, 1.0
            ))

        close_types = (RelationshipType.FAMILY, RelationshipType.PROFESSIONAL)
        for outgoing in self._latest_perceptions_from(entity.entity_id).values():
            incoming = self._latest_perception(outgoing.target_id, entity.entity_id)
            if incoming is None or outgoing.tension_level is None or incoming.tension_level is None:
                continue
            if abs(outgoing.tension_level - incoming.tension_level) < self._config.tension_asymmetry:
                continue
            close = any(
                r.rel_type in close_types and r.involves(outgoing.target_id)
                for r in relationships
            )
            message = (
                f"Asymmetric tension with {outgoing.target_id}: "
                f"{outgoing.tension_level} vs {incoming.tension_level}"
            )
            violations.append(self._violation(
                entity,
                ValidationRule.RELATIONSHIP,
                Severity.WARNING if close else Severity.INFO,
                message,
                self._config.relationship_confidence
            ))

        return violations

    def _latest_perceptions_from(self, observer_id: str):
        latest = {}
        records = self._repository.list_perceptions(PerceptionFilter(observer_id=observer_id))
        for record in sorted(records, key=lambda p: p.recorded_at):
            latest[record.target_id] = record
        return dict(sorted(latest.items()))

    def _latest_perception(self, observer_id: str, target_id: str):
        records = self._repository.list_perceptions(
            PerceptionFilter(observer_id=observer_id, target_id=target_id)
        )
        return sorted(records, key=lambda p: p.recorded_at)[-1] if records else None

    # =========================================================================
    # RULE: FACT COMPLIANCE
    # =========================================================================

    def applicable_facts(self, entity: Entity) -> List[UniverseFact]:
        return [f for f in self._repository.list_facts() if f.applies(entity)]

    def _has_strict_fact(self, entity: Entity) -> bool:
        return any(
            f.enforcement is EnforcementLevel.STRICT and f.applies_to
            for f in self.applicable_facts(entity)
        )

    def _check_facts(self, entity: Entity) -> List[Violation]:
        text = entity.searchable_text()
        intentional = entity.entity_type == EntityType.KNOWLEDGE
        violations = []

        for fact in self.applicable_facts(entity):
            if fact.enforcement is EnforcementLevel.INFORMATIONAL:
                continue
            if not self.detect_potential_violation(text, fact):
                continue

            confidence = self.match_confidence(text, fact)
            severity = severity_for(
                fact.enforcement, confidence, intentional, self._config.confidence_threshold
            )
            message = f"{entity.name} may violate fact '{fact.title}'"
            violations.append(Violation(
                entity_id=entity.entity_id,
                rule=ValidationRule.FACT_COMPLIANCE,
                severity=severity,
                message=message,
                confidence=confidence,
                fact_id=fact.fact_id,
                fact_title=fact.title,
                intentional=intentional,
                suggested_fix=suggested_fix(ValidationRule.FACT_COMPLIANCE, message)
            ))

        return violations

    def _keywords(self, text: str) -> List[str]:
        return [w for w in _WORD.findall(text.lower()) if len(w) >= self._config.min_keyword_length]

    def detect_potential_violation(self, text: str, fact: UniverseFact) -> bool:
        """
        Keyword heuristics.

        A fact keyword preceded closely by a negation suggests the entity
        contradicts the fact; a prohibition fact ("No magic") is violated
        when the entity mentions the forbidden term.
        """
        title = fact.title.lower().strip()
        description = fact.description.lower()

        for keyword in self._keywords(f"{title} {description}"):
            position = text.find(keyword)
            if position < 0:
                continue
            context = text[max(0, position - self._config.negation_window):position]
            if any(marker in context for marker in NEGATION_MARKERS):
                return True

        if title.startswith("no ") or "prohibited" in description:
            forbidden = title[3:].strip() if title.startswith("no ") else title
            if forbidden and forbidden in text:
                return True

        return False

    def match_confidence(self, text: str, fact: UniverseFact) -> float:
        """0.3 + 0.6 x the share of title keywords found in the entity text."""
        keywords = self._keywords(fact.title)
        if not keywords:
            return 0.5
        matched = sum(1 for k in keywords if k in text)
        return 0.3 + 0.6 * matched / len(keywords)

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _violation(entity: Entity, rule: ValidationRule, severity: Severity,
                   message: str, confidence: float) -> Violation:
        return Violation(
            entity_id=entity.entity_id,
            rule=rule,
            severity=severity,
            message=message,
            confidence=confidence,
            suggested_fix=suggested_fix(rule, message)
        )
